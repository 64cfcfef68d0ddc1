# Overview: Service-layer operations for orders; pricing, creation and the status state machine.

"""
Order Ledger

WHY: Turns a priced cart into an immutable order and moves it through the
kitchen workflow. Money figures are fixed at creation; afterwards only the
status and payment status change.

STATE MACHINE:
    pending   -> preparing | cancelled
    preparing -> ready | cancelled
    ready     -> completed
    completed, cancelled: terminal

DESIGN PRINCIPLES:
- The server recomputes subtotal and total; client totals are advisory
- total = max(0, subtotal - discount) + delivery_charge, discount <= subtotal
- Only staff/admin move status; an illegal edge changes nothing
- Cancellation never refunds (payments are refunded separately)
- Every change writes an event in the same transaction
"""

from __future__ import annotations

from flask import current_app

from ..errors import (
    InvalidOrder,
    InvalidAmount,
    InvalidTransition,
    TransitionForbidden,
    OrderNotFound,
    SessionNotFound,
    SessionClosed,
)
from ..extensions import db
from ..models import (
    Order,
    OrderItem,
    OrderEvent,
    OrderStatus,
    OrderType,
    OrderSource,
    OrderPaymentStatus,
    PaymentMethod,
    POSSession,
    ActorRole,
)
from ..money import MoneyInput, to_cents, from_cents, format_money
from ..time_utils import utcnow
from . import session_service
from .concurrency import lock_for_update, run_with_retry
from .delivery_service import DeliveryFeeResult, calculate_delivery_fee
from .discount_service import (
    DiscountResult,
    apply_manual_discount,
    attach_redemption_to_order,
    redeem_promo_code,
    release_redemption,
)
from .document_service import next_order_number
from .event_service import append_event, list_events
from .kitchen_service import publish_kitchen_ticket
from .table_service import occupy_table, release_table


# =============================================================================
# STATE MACHINE
# =============================================================================

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

STAFF_ROLES = frozenset({ActorRole.ADMIN, ActorRole.STAFF})


def resolve_transition(current, requested, actor_role) -> OrderStatus:
    """
    Validate a status change and return the new status.

    Pure function: no database access, nothing is mutated.

    Raises:
        TransitionForbidden: actor is not staff or admin
        InvalidTransition: edge not in ALLOWED_TRANSITIONS (or unknown status)
    """
    try:
        role = ActorRole(actor_role)
    except ValueError:
        raise TransitionForbidden(f"Unknown actor role '{actor_role}'", field="actor_role")
    if role not in STAFF_ROLES:
        raise TransitionForbidden(field="actor_role")

    current = OrderStatus(current)
    try:
        target = OrderStatus(requested)
    except ValueError:
        raise InvalidTransition(f"Unknown order status '{requested}'", field="status")

    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot move order from {current.value} to {target.value}",
            field="status",
            details={
                "from": current.value,
                "to": target.value,
                "allowed": sorted(s.value for s in ALLOWED_TRANSITIONS[current]),
            },
        )
    return target


# =============================================================================
# PRICING
# =============================================================================

def _variant_name(variant) -> str:
    if isinstance(variant, dict):
        return str(variant.get("name", ""))
    return str(variant)


def _normalize_item(raw: dict, position: int) -> dict:
    if not isinstance(raw, dict):
        raise InvalidOrder(f"Item {position} must be an object", field=f"items[{position}]")

    item_id = raw.get("item_id", raw.get("id"))
    if item_id in (None, ""):
        raise InvalidOrder(f"Item {position} is missing item_id", field=f"items[{position}].item_id")

    quantity = raw.get("quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidOrder(
            f"Item {position} quantity must be a positive integer",
            field=f"items[{position}].quantity",
        )

    price = raw.get("unit_price", raw.get("price"))
    try:
        unit_price_cents = to_cents(price, field=f"items[{position}].unit_price")
    except InvalidAmount as exc:
        raise InvalidOrder(exc.message, field=exc.field) from exc
    if unit_price_cents < 0:
        raise InvalidOrder(f"Item {position} price cannot be negative", field=f"items[{position}].unit_price")

    variants = raw.get("variants") or []
    if not isinstance(variants, list):
        raise InvalidOrder(f"Item {position} variants must be a list", field=f"items[{position}].variants")

    return {
        "item_id": str(item_id),
        "name": raw.get("name"),
        "quantity": quantity,
        "unit_price_cents": unit_price_cents,
        "line_total_cents": unit_price_cents * quantity,
        "variants": [_variant_name(v) for v in variants],
        "notes": raw.get("notes"),
    }


def compute_subtotal(items: list[dict]) -> int:
    """Sum of quantity * unit price over the cart, in cents."""
    if not items:
        raise InvalidOrder("Order must contain at least one item", field="items")
    return sum(_normalize_item(item, i)["line_total_cents"] for i, item in enumerate(items))


def compute_total(subtotal_cents: int, discount_cents: int, delivery_charge_cents: int) -> int:
    return max(0, subtotal_cents - discount_cents) + delivery_charge_cents


# =============================================================================
# ORDER CREATION
# =============================================================================

def _parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidOrder(f"Invalid {field} '{value}'. Must be one of: {allowed}", field=field)


def create_order(
    branch_id: int,
    items: list[dict],
    order_type: str,
    customer_info: dict | None = None,
    discount_result: DiscountResult | None = None,
    fee_result: DeliveryFeeResult | None = None,
    *,
    order_source: str = "online",
    payment_method: str = "cash",
    session_id: int | None = None,
    table_id: int | None = None,
    actor_id: int | None = None,
    notes: str | None = None,
    expected_total: MoneyInput | None = None,
) -> Order:
    """
    Create an order in PENDING / payment PENDING.

    Args:
        branch_id: Branch taking the order
        items: Cart lines {item_id, quantity, unit_price, name?, variants?, notes?}
        order_type: delivery, pickup or dine-in
        customer_info: {customer_id?, name?, phone?, address?}
        discount_result: From discount_service (manual or promo)
        fee_result: From delivery_service; required for delivery orders
        expected_total: Client-side total; logged when it disagrees, never used

    Returns:
        Order (committed), with order.created and kitchen.ticket events written
    """
    if not branch_id:
        raise InvalidOrder("branch_id is required", field="branch_id")
    if not items:
        raise InvalidOrder("Order must contain at least one item", field="items")

    otype = _parse_enum(OrderType, order_type, "order_type")
    source = _parse_enum(OrderSource, order_source, "order_source")
    method = _parse_enum(PaymentMethod, payment_method, "payment_method")
    customer_info = customer_info or {}

    lines = [_normalize_item(item, i) for i, item in enumerate(items)]
    subtotal_cents = sum(line["line_total_cents"] for line in lines)

    discount_cents = 0
    if discount_result is not None:
        discount_cents = min(max(discount_result.discount_cents, 0), subtotal_cents)

    if otype == OrderType.DELIVERY:
        if fee_result is None:
            raise InvalidOrder("Delivery orders require a delivery fee", field="delivery_charge")
        if not customer_info.get("address"):
            raise InvalidOrder("Delivery orders require a customer address", field="customer_address")
        delivery_charge_cents = fee_result.fee_cents
        distance = fee_result.distance_km
    else:
        delivery_charge_cents = 0
        distance = None

    if table_id is not None and otype != OrderType.DINE_IN:
        raise InvalidOrder("Only dine-in orders can be seated at a table", field="table_id")

    total_cents = compute_total(subtotal_cents, discount_cents, delivery_charge_cents)

    if expected_total is not None:
        try:
            client_total = to_cents(expected_total, field="expected_total")
        except InvalidAmount:
            client_total = None
        if client_total != total_cents:
            current_app.logger.warning(
                "Client total %s differs from computed total %s for branch %s; using computed",
                expected_total, format_money(total_cents), branch_id,
            )

    def _op():
        if session_id is not None:
            session = db.session.get(POSSession, session_id)
            if session is None:
                raise SessionNotFound(field="session_id")
            if session.branch_id != branch_id:
                raise InvalidOrder("POS session belongs to another branch", field="session_id")
            if not session.is_open:
                raise SessionClosed(f"POS session {session.session_number} is closed", field="session_id")

        now = utcnow()
        order = Order(
            order_number=next_order_number(branch_id),
            branch_id=branch_id,
            customer_id=customer_info.get("customer_id"),
            customer_name=customer_info.get("name"),
            customer_phone=customer_info.get("phone"),
            customer_address=customer_info.get("address"),
            order_type=otype,
            order_source=source,
            status=OrderStatus.PENDING,
            payment_method=method,
            payment_status=OrderPaymentStatus.PENDING,
            subtotal_cents=subtotal_cents,
            discount_cents=discount_cents,
            discount_reason=discount_result.reason if discount_result and discount_cents else None,
            promo_code_id=discount_result.promo_code_id if discount_result else None,
            delivery_charge_cents=delivery_charge_cents,
            delivery_distance_km=distance,
            total_cents=total_cents,
            amount_paid_cents=0,
            session_id=session_id,
            table_id=table_id,
            notes=notes,
            created_by_actor_id=actor_id,
            created_at=now,
            updated_at=now,
        )
        order.items = [OrderItem(position=i, created_at=now, **line) for i, line in enumerate(lines)]
        db.session.add(order)
        db.session.flush()

        if discount_result is not None and discount_result.redemption_id is not None:
            attach_redemption_to_order(discount_result.redemption_id, order.id)

        if table_id is not None:
            occupy_table(table_id, branch_id, order.id)

        append_event(
            branch_id=branch_id,
            event_type="order.created",
            order_id=order.id,
            session_id=session_id,
            actor_id=actor_id,
            to_status=OrderStatus.PENDING.value,
            payload={
                "order_number": order.order_number,
                "subtotal": str(order.subtotal),
                "discount": str(order.discount),
                "delivery_charge": str(order.delivery_charge),
                "total": str(order.total),
            },
        )
        publish_kitchen_ticket(order, actor_id=actor_id)

        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "Order %s created (branch %s, %s, total %s)",
        order.order_number, branch_id, otype.value, format_money(order.total_cents),
    )
    return order


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def update_order_status(order_id: int, requested: str, actor_role: str, actor_id: int | None = None) -> Order:
    """
    Move an order to a new status.

    The order row is locked, the transition validated with
    resolve_transition, and the change recorded as order.status_changed.
    Entering PREPARING republishes the kitchen ticket; reaching COMPLETED or
    CANCELLED frees the dine-in table. Cancellation leaves payments alone.
    """
    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise OrderNotFound(field="order_id")

        previous = order.status
        target = resolve_transition(previous, requested, actor_role)

        now = utcnow()
        order.status = target
        order.updated_at = now
        if target == OrderStatus.COMPLETED:
            order.completed_at = now
        elif target == OrderStatus.CANCELLED:
            order.cancelled_at = now

        if target in TERMINAL_STATUSES and order.table_id is not None:
            release_table(order.table_id, order.id)

        append_event(
            branch_id=order.branch_id,
            event_type="order.status_changed",
            order_id=order.id,
            session_id=order.session_id,
            actor_id=actor_id,
            from_status=previous.value,
            to_status=target.value,
            payload={"payment_status": order.payment_status.value} if target == OrderStatus.CANCELLED else None,
        )
        if target == OrderStatus.PREPARING:
            publish_kitchen_ticket(order, actor_id=actor_id)

        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# CHECKOUT
# =============================================================================

def checkout(
    branch_id: int,
    items: list[dict],
    order_type: str,
    customer_info: dict | None = None,
    *,
    actor_role: str = "customer",
    actor_id: int | None = None,
    promo_code: str | None = None,
    manual_discount: dict | None = None,
    distance_km=None,
    order_source: str = "online",
    payment_method: str = "cash",
    session_id: int | None = None,
    till: str | None = None,
    table_id: int | None = None,
    notes: str | None = None,
    expected_total: MoneyInput | None = None,
) -> Order:
    """
    Price a cart and place the order.

    cart -> discount (manual or promo) -> delivery fee -> create_order

    Manual discounts are staff-only; a cart takes a manual discount or a
    promo code, not both. POS orders without an explicit session join the
    till's open session when there is one. A promo redemption is released
    again if the order cannot be created.
    """
    customer_info = customer_info or {}
    subtotal_cents = compute_subtotal(items)
    otype = _parse_enum(OrderType, order_type, "order_type")

    if promo_code and manual_discount:
        raise InvalidOrder("Apply either a manual discount or a promo code, not both", field="discount")
    if manual_discount and _parse_enum(ActorRole, actor_role, "actor_role") not in STAFF_ROLES:
        raise TransitionForbidden("Only staff can apply manual discounts", field="manual_discount")

    fee_result = None
    if otype == OrderType.DELIVERY:
        fee_result = calculate_delivery_fee(branch_id, from_cents(subtotal_cents), distance_km)

    if session_id is None and _parse_enum(OrderSource, order_source, "order_source") == OrderSource.POS:
        active = session_service.get_active_session(branch_id, till)
        session_id = active.id if active is not None else None

    discount_result = None
    if manual_discount:
        discount_result = apply_manual_discount(
            from_cents(subtotal_cents),
            manual_discount.get("discount_type", manual_discount.get("type")),
            manual_discount.get("value"),
            manual_discount.get("reason"),
        )
    elif promo_code:
        discount_result = redeem_promo_code(
            promo_code,
            from_cents(subtotal_cents),
            branch_id,
            user_id=customer_info.get("customer_id") or actor_id,
        )

    try:
        return create_order(
            branch_id,
            items,
            order_type,
            customer_info,
            discount_result,
            fee_result,
            order_source=order_source,
            payment_method=payment_method,
            session_id=session_id,
            table_id=table_id,
            actor_id=actor_id,
            notes=notes,
            expected_total=expected_total,
        )
    except Exception:
        if discount_result is not None and discount_result.redemption_id is not None:
            release_redemption(discount_result.redemption_id)
        raise


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(field="order_id")
    return order


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if order is None:
        raise OrderNotFound(field="order_number")
    return order


def list_orders(
    branch_id: int | None = None,
    status: str | None = None,
    session_id: int | None = None,
    limit: int = 100,
) -> list[Order]:
    q = db.session.query(Order)
    if branch_id is not None:
        q = q.filter(Order.branch_id == branch_id)
    if status:
        q = q.filter(Order.status == _parse_enum(OrderStatus, status, "status"))
    if session_id is not None:
        q = q.filter(Order.session_id == session_id)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def get_order_events(order_id: int) -> list[OrderEvent]:
    get_order(order_id)
    return list_events(order_id=order_id)


def order_totals_consistent(order: Order) -> bool:
    """Check the stored money figures against the pricing rule."""
    return (
        order.discount_cents <= order.subtotal_cents
        and order.total_cents == compute_total(order.subtotal_cents, order.discount_cents, order.delivery_charge_cents)
        and sum(item.line_total_cents for item in order.items) == order.subtotal_cents
    )
