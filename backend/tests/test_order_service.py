from decimal import Decimal

import pytest

from restopos.errors import (
    InvalidOrder,
    InvalidTransition,
    SessionClosed,
    TransitionForbidden,
)
from restopos.models import (
    OrderEvent,
    OrderPaymentStatus,
    OrderStatus,
    PaymentRecord,
    PromoCode,
    TableStatus,
)
from restopos.services import (
    delivery_service,
    discount_service,
    order_service,
    payment_service,
    session_service,
    table_service,
)
from restopos.services.discount_service import DiscountResult
from restopos.services.kitchen_service import KITCHEN_TICKET_EVENT


CART = [
    {"item_id": "zinger", "name": "Zinger", "quantity": 2, "unit_price": "450.00", "variants": ["Large"]},
    {"item_id": "fries", "name": "Fries", "quantity": 1, "unit_price": "200.00"},
]


# =============================================================================
# STATE MACHINE
# =============================================================================

@pytest.mark.parametrize("current,requested", [
    ("pending", "preparing"),
    ("pending", "cancelled"),
    ("preparing", "ready"),
    ("preparing", "cancelled"),
    ("ready", "completed"),
])
def test_allowed_transitions(current, requested):
    assert order_service.resolve_transition(current, requested, "staff") == OrderStatus(requested)


@pytest.mark.parametrize("current,requested", [
    ("pending", "ready"),
    ("pending", "completed"),
    ("preparing", "pending"),
    ("ready", "cancelled"),
    ("completed", "cancelled"),
    ("cancelled", "preparing"),
    ("pending", "served"),
])
def test_illegal_transitions(current, requested):
    with pytest.raises(InvalidTransition):
        order_service.resolve_transition(current, requested, "admin")


def test_customers_cannot_move_status():
    with pytest.raises(TransitionForbidden):
        order_service.resolve_transition("pending", "preparing", "customer")
    with pytest.raises(TransitionForbidden):
        order_service.resolve_transition("pending", "preparing", "robot")


# =============================================================================
# PRICING & CREATION
# =============================================================================

def test_compute_subtotal_and_total():
    assert order_service.compute_subtotal(CART) == 110000
    assert order_service.compute_total(110000, 11000, 5000) == 104000
    assert order_service.compute_total(1000, 5000, 5000) == 5000


@pytest.mark.parametrize("items", [
    [],
    [{"item_id": "x", "quantity": 0, "unit_price": "10"}],
    [{"item_id": "x", "quantity": 1.5, "unit_price": "10"}],
    [{"item_id": "x", "quantity": 1, "unit_price": "-10"}],
    [{"item_id": "x", "quantity": 1, "unit_price": "ten"}],
    [{"quantity": 1, "unit_price": "10"}],
])
def test_invalid_carts_rejected(items):
    with pytest.raises(InvalidOrder):
        order_service.compute_subtotal(items)


def test_create_order_with_manual_discount(db_session, branch_id):
    discount = discount_service.apply_manual_discount("1100.00", "percentage", "10")

    order = order_service.create_order(branch_id, CART, "pickup", {"name": "Ayesha"}, discount)

    assert order.status == OrderStatus.PENDING
    assert order.payment_status == OrderPaymentStatus.PENDING
    assert order.subtotal == Decimal("1100.00")
    assert order.discount == Decimal("110.00")
    assert order.delivery_charge == Decimal("0.00")
    assert order.total == Decimal("990.00")
    assert order.discount_reason == "Manual discount (10%)"
    assert [item.line_total_cents for item in order.items] == [90000, 20000]
    assert order.items[0].variants == ["Large"]
    assert order_service.order_totals_consistent(order)


def test_discount_never_exceeds_subtotal(db_session, branch_id):
    order = order_service.create_order(
        branch_id, CART, "pickup", discount_result=DiscountResult(discount_cents=999999, reason="Oops"),
    )
    assert order.discount_cents == order.subtotal_cents
    assert order.total_cents == 0
    assert order_service.order_totals_consistent(order)


def test_delivery_order_adds_fee(db_session, make_order):
    order = make_order("800.00", order_type="delivery")
    assert order.delivery_charge == Decimal("50.00")
    assert order.total == Decimal("850.00")
    assert order.customer_address == "12 Canal Road"


def test_delivery_order_requires_address_and_fee(db_session, branch_id):
    fee = delivery_service.calculate_delivery_fee(branch_id, "1100.00")
    with pytest.raises(InvalidOrder):
        order_service.create_order(branch_id, CART, "delivery", {}, fee_result=fee)
    with pytest.raises(InvalidOrder):
        order_service.create_order(branch_id, CART, "delivery", {"address": "12 Canal Road"})


def test_client_total_is_advisory(db_session, branch_id):
    order = order_service.create_order(branch_id, CART, "pickup", expected_total="1.00")
    assert order.total == Decimal("1100.00")


def test_order_numbers_are_sequential(db_session, make_order):
    first = make_order()
    second = make_order()
    assert first.order_number.startswith("ORD-")
    assert first.order_number.endswith("-001-0001")
    assert second.order_number.endswith("-001-0002")


def test_creation_writes_event_and_kitchen_ticket(db_session, make_order):
    order = make_order()
    events = order_service.get_order_events(order.id)
    assert [e.event_type for e in events] == ["order.created", KITCHEN_TICKET_EVENT]
    ticket = events[1].payload
    assert ticket["order_number"] == order.order_number
    assert ticket["items"][0]["item_id"] == "meal"


def test_invalid_order_type(db_session, branch_id):
    with pytest.raises(InvalidOrder):
        order_service.create_order(branch_id, CART, "drive-thru")


# =============================================================================
# STATUS CHANGES
# =============================================================================

def test_status_walk_to_completed(db_session, make_order):
    order = make_order()
    for status in ("preparing", "ready", "completed"):
        order = order_service.update_order_status(order.id, status, "staff", actor_id=10)

    assert order.status == OrderStatus.COMPLETED
    assert order.completed_at is not None
    changes = [
        (e.from_status, e.to_status)
        for e in order_service.get_order_events(order.id)
        if e.event_type == "order.status_changed"
    ]
    assert changes == [("pending", "preparing"), ("preparing", "ready"), ("ready", "completed")]


def test_entering_preparing_publishes_ticket(db_session, make_order):
    order = make_order()
    order_service.update_order_status(order.id, "preparing", "staff")
    tickets = db_session.query(OrderEvent).filter_by(order_id=order.id, event_type=KITCHEN_TICKET_EVENT).all()
    assert [t.to_status for t in tickets] == ["pending", "preparing"]


def test_illegal_transition_leaves_order_untouched(db_session, make_order):
    order = make_order()
    with pytest.raises(InvalidTransition):
        order_service.update_order_status(order.id, "ready", "staff")

    order = order_service.get_order(order.id)
    assert order.status == OrderStatus.PENDING
    assert db_session.query(OrderEvent).filter_by(order_id=order.id, event_type="order.status_changed").count() == 0


def test_cancelled_order_cannot_resume(db_session, make_order):
    order = make_order()
    order_service.update_order_status(order.id, "cancelled", "staff")
    with pytest.raises(InvalidTransition):
        order_service.update_order_status(order.id, "preparing", "staff")
    assert order_service.get_order(order.id).cancelled_at is not None


def test_customer_status_change_forbidden(db_session, make_order):
    order = make_order()
    with pytest.raises(TransitionForbidden):
        order_service.update_order_status(order.id, "cancelled", "customer")
    assert order_service.get_order(order.id).status == OrderStatus.PENDING


def test_cancellation_never_refunds(db_session, make_order):
    order = make_order()
    payment_service.record_single_payment(order.id, "card", "1000.00", recorded_by=10)

    order = order_service.update_order_status(order.id, "cancelled", "staff")

    assert order.payment_status == OrderPaymentStatus.PAID
    assert order.amount_paid == Decimal("1000.00")
    assert db_session.query(PaymentRecord).filter_by(order_id=order.id).count() == 1


# =============================================================================
# CHECKOUT
# =============================================================================

def test_checkout_with_promo_code(db_session, make_promo, branch_id):
    make_promo(usage_limit=5)
    order = order_service.checkout(branch_id, CART, "pickup", {"customer_id": 7}, promo_code="SAVE10")

    assert order.discount == Decimal("110.00")
    assert order.total == Decimal("990.00")
    assert order.promo_code.code == "SAVE10"
    assert order.promo_code.redemptions[0].order_id == order.id


def test_checkout_rejects_promo_and_manual_together(db_session, make_promo, branch_id):
    make_promo()
    with pytest.raises(InvalidOrder):
        order_service.checkout(
            branch_id, CART, "pickup",
            actor_role="staff",
            promo_code="SAVE10",
            manual_discount={"discount_type": "fixed", "value": "50"},
        )


def test_manual_discount_is_staff_only(db_session, branch_id):
    with pytest.raises(TransitionForbidden):
        order_service.checkout(
            branch_id, CART, "pickup",
            actor_role="customer",
            manual_discount={"discount_type": "fixed", "value": "50"},
        )

    order = order_service.checkout(
        branch_id, CART, "pickup",
        actor_role="staff",
        manual_discount={"discount_type": "fixed", "value": "50", "reason": "Regular"},
    )
    assert order.discount == Decimal("50.00")
    assert order.discount_reason == "Regular"


def test_failed_checkout_releases_promo(db_session, make_promo, branch_id):
    promo = make_promo(usage_limit=1)
    with pytest.raises(InvalidOrder):
        order_service.checkout(branch_id, CART, "pickup", promo_code="SAVE10", table_id=99)

    db_session.refresh(promo)
    assert promo.usage_count == 0
    assert db_session.get(PromoCode, promo.id).redemptions == []


def test_delivery_checkout_prices_fee(db_session, branch_id):
    delivery_service.upsert_delivery_config(branch_id, {
        "pricing_model": "dynamic", "base_charge": "50", "per_km_charge": "20", "free_delivery_threshold": None,
    })

    order = order_service.checkout(
        branch_id, CART, "delivery", {"address": "12 Canal Road"}, distance_km="5",
    )

    assert order.delivery_charge == Decimal("150.00")
    assert order.delivery_distance_km == Decimal("5")
    assert order.total == Decimal("1250.00")


def test_pos_checkout_joins_open_session(db_session, pos_session, branch_id):
    order = order_service.checkout(branch_id, CART, "pickup", order_source="pos", actor_role="staff")
    assert order.session_id == pos_session.id


def test_order_rejected_on_closed_session(db_session, pos_session, branch_id):
    session_service.close_session(pos_session.id, "1000.00", closed_by=10)
    with pytest.raises(SessionClosed):
        order_service.create_order(branch_id, CART, "pickup", session_id=pos_session.id)


def test_dine_in_occupies_and_releases_table(db_session, branch_id):
    table = table_service.create_table(branch_id, "T4", seats=2)

    order = order_service.checkout(branch_id, CART, "dine-in", table_id=table.id, order_source="pos")
    table = table_service.get_table(table.id)
    assert table.status == TableStatus.OCCUPIED
    assert table.current_order_id == order.id

    for status in ("preparing", "ready", "completed"):
        order_service.update_order_status(order.id, status, "staff")
    table = table_service.get_table(table.id)
    assert table.status == TableStatus.AVAILABLE
    assert table.current_order_id is None


def test_list_orders_filters(db_session, make_order, branch_id):
    first = make_order()
    make_order()
    order_service.update_order_status(first.id, "cancelled", "staff")

    assert [o.id for o in order_service.list_orders(branch_id=branch_id, status="cancelled")] == [first.id]
    assert len(order_service.list_orders(branch_id=branch_id)) == 2
    assert order_service.get_order_by_number(first.order_number).id == first.id
