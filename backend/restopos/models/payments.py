from __future__ import annotations

from ..extensions import db
from ..money import from_cents
from ..time_utils import to_utc_z, utcnow
from .enums import PaymentMethod, PaymentRecordStatus, PaymentKind, enum_type


class PaymentRecord(db.Model):
    """
    Payment (or refund) recorded against an order.

    WHY: Payments are their own aggregate so payment history survives any
    later order change. The payment log is the source of truth that session
    totals are audited against.

    DESIGN:
    - amount_cents is the amount applied to the order; cash over-tender is
      kept in tendered/change and never becomes a debt
    - split legs share a split_group
    - refunds are new rows (kind=refund, negative amount, refund_of_id set);
      the original amount is never rewritten
    """
    __tablename__ = "payment_records"
    __table_args__ = (
        db.Index("ix_payment_records_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("pos_sessions.id"), nullable=True, index=True)

    kind = db.Column(enum_type(PaymentKind, "payment_kind"), nullable=False, default=PaymentKind.PAYMENT)
    method = db.Column(enum_type(PaymentMethod, "payment_record_method"), nullable=False, index=True)
    status = db.Column(
        enum_type(PaymentRecordStatus, "payment_record_status"),
        nullable=False,
        default=PaymentRecordStatus.COMPLETED,
        index=True,
    )

    # Amounts (in cents). Refund rows carry a negative amount.
    amount_cents = db.Column(db.Integer, nullable=False)
    tendered_cents = db.Column(db.Integer, nullable=True)
    change_cents = db.Column(db.Integer, nullable=False, default=0)
    refunded_cents = db.Column(db.Integer, nullable=False, default=0)

    # Legs of one split payment share a group key
    split_group = db.Column(db.String(36), nullable=True, index=True)
    refund_of_id = db.Column(db.Integer, db.ForeignKey("payment_records.id"), nullable=True, index=True)

    # Card auth code, JazzCash transaction id, etc.
    reference = db.Column(db.String(128), nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    recorded_by_actor_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    verified_at = db.Column(db.DateTime, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True))
    refund_of = db.relationship("PaymentRecord", remote_side=[id], backref=db.backref("refunds", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def amount(self):
        return from_cents(self.amount_cents)

    @property
    def change(self):
        return from_cents(self.change_cents)

    @property
    def refundable_cents(self) -> int:
        if self.kind != PaymentKind.PAYMENT or self.status not in (
            PaymentRecordStatus.COMPLETED,
            PaymentRecordStatus.REFUNDED,
        ):
            return 0
        return max(0, self.amount_cents - (self.refunded_cents or 0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "session_id": self.session_id,
            "kind": self.kind.value,
            "method": self.method.value,
            "status": self.status.value,
            "amount": str(self.amount),
            "tendered": str(from_cents(self.tendered_cents)) if self.tendered_cents is not None else None,
            "change": str(self.change),
            "refunded": str(from_cents(self.refunded_cents)),
            "split_group": self.split_group,
            "refund_of_id": self.refund_of_id,
            "reference": self.reference,
            "reason": self.reason,
            "recorded_by_actor_id": self.recorded_by_actor_id,
            "created_at": to_utc_z(self.created_at),
            "verified_at": to_utc_z(self.verified_at),
            "version_id": self.version_id,
        }
