from __future__ import annotations

from ..extensions import db
from ..money import from_cents
from ..time_utils import to_utc_z, utcnow
from .enums import (
    OrderStatus,
    OrderType,
    OrderSource,
    PaymentMethod,
    OrderPaymentStatus,
    enum_type,
)


class Order(db.Model):
    """
    Customer order (online, POS or phone).

    WHY: The order is the unit the kitchen prepares and payments settle.
    Money figures are computed server-side at creation and never edited
    afterwards; only status and payment status move.

    INVARIANTS:
    - total = max(0, subtotal - discount) + delivery_charge
    - discount <= subtotal
    - never deleted; CANCELLED is terminal
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint("discount_cents <= subtotal_cents", name="ck_orders_discount_le_subtotal"),
        db.CheckConstraint("total_cents >= 0", name="ck_orders_total_non_negative"),
        db.Index("ix_orders_branch_status_created", "branch_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable order number (e.g., "ORD-20261018-001-0042")
    order_number = db.Column(db.String(64), nullable=False, unique=True)

    # Branch and customer live in external services; referenced by id only
    branch_id = db.Column(db.Integer, nullable=False, index=True)
    customer_id = db.Column(db.Integer, nullable=True, index=True)
    customer_name = db.Column(db.String(128), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_address = db.Column(db.String(255), nullable=True)

    order_type = db.Column(enum_type(OrderType, "order_type"), nullable=False)
    order_source = db.Column(enum_type(OrderSource, "order_source"), nullable=False, default=OrderSource.ONLINE)
    status = db.Column(enum_type(OrderStatus, "order_status"), nullable=False, default=OrderStatus.PENDING, index=True)

    payment_method = db.Column(enum_type(PaymentMethod, "order_payment_method"), nullable=False, default=PaymentMethod.CASH)
    payment_status = db.Column(
        enum_type(OrderPaymentStatus, "order_payment_status"),
        nullable=False,
        default=OrderPaymentStatus.PENDING,
        index=True,
    )

    # Money (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_reason = db.Column(db.String(255), nullable=True)
    promo_code_id = db.Column(db.Integer, db.ForeignKey("promo_codes.id"), nullable=True, index=True)
    delivery_charge_cents = db.Column(db.Integer, nullable=False, default=0)
    delivery_distance_km = db.Column(db.Numeric(8, 2), nullable=True)
    total_cents = db.Column(db.Integer, nullable=False)

    # Net of refunds; maintained by payment_service
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    # POS context
    session_id = db.Column(db.Integer, db.ForeignKey("pos_sessions.id"), nullable=True, index=True)
    table_id = db.Column(db.Integer, db.ForeignKey("dining_tables.id"), nullable=True, index=True)

    notes = db.Column(db.Text, nullable=True)
    created_by_actor_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.position",
    )
    promo_code = db.relationship("PromoCode")
    session = db.relationship("POSSession", backref=db.backref("orders", lazy=True))
    table = db.relationship("DiningTable", foreign_keys=[table_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def subtotal(self):
        return from_cents(self.subtotal_cents)

    @property
    def discount(self):
        return from_cents(self.discount_cents)

    @property
    def delivery_charge(self):
        return from_cents(self.delivery_charge_cents)

    @property
    def total(self):
        return from_cents(self.total_cents)

    @property
    def amount_paid(self):
        return from_cents(self.amount_paid_cents)

    @property
    def balance_due_cents(self) -> int:
        return max(0, self.total_cents - (self.amount_paid_cents or 0))

    @property
    def balance_due(self):
        return from_cents(self.balance_due_cents)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "branch_id": self.branch_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "order_type": self.order_type.value,
            "order_source": self.order_source.value,
            "status": self.status.value,
            "payment_method": self.payment_method.value,
            "payment_status": self.payment_status.value,
            "subtotal": str(self.subtotal),
            "discount": str(self.discount),
            "discount_reason": self.discount_reason,
            "promo_code_id": self.promo_code_id,
            "delivery_charge": str(self.delivery_charge),
            "delivery_distance_km": str(self.delivery_distance_km) if self.delivery_distance_km is not None else None,
            "total": str(self.total),
            "amount_paid": str(self.amount_paid),
            "balance_due": str(self.balance_due),
            "session_id": self.session_id,
            "table_id": self.table_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Line item snapshot.

    Prices are copied from the cart at checkout; later catalog changes never
    reach an existing order. There is no update path for these rows.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    # Catalog id from the menu service
    item_id = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    variants = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    @property
    def unit_price(self):
        return from_cents(self.unit_price_cents)

    @property
    def line_total(self):
        return from_cents(self.line_total_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "line_total": str(self.line_total),
            "variants": list(self.variants or []),
            "notes": self.notes,
        }


class OrderEvent(db.Model):
    """
    Append-only order/payment/session event log.

    WHY: Audit trail for every state transition and the outbox the kitchen
    display polls. No updates, no deletes.
    """
    __tablename__ = "order_events"
    __table_args__ = (
        db.Index("ix_order_events_branch_type_id", "branch_id", "event_type", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payment_records.id"), nullable=True, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("pos_sessions.id"), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)
    actor_id = db.Column(db.Integer, nullable=True)
    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "order_id": self.order_id,
            "payment_id": self.payment_id,
            "session_id": self.session_id,
            "event_type": self.event_type,
            "actor_id": self.actor_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "note": self.note,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
