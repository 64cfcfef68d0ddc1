from __future__ import annotations

from ..extensions import db
from ..money import from_cents
from ..time_utils import to_utc_z, utcnow
from .enums import SessionStatus, PaymentMethod, enum_type


class POSSession(db.Model):
    """
    Cash register session (cashier shift).

    LIFECYCLE:
    - OPEN: payments taken at this till post their totals here
    - CLOSED: cash counted, difference computed

    IMMUTABLE: Once closed, totals are never recomputed or modified.
    At most one OPEN session per (branch, till), enforced by a partial
    unique index so concurrent opens cannot both succeed.
    """
    __tablename__ = "pos_sessions"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "session_number", name="uq_pos_sessions_branch_number"),
        db.Index(
            "uq_pos_sessions_one_open_per_till",
            "branch_id",
            "till",
            unique=True,
            sqlite_where=db.text("status = 'open'"),
            postgresql_where=db.text("status = 'open'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_number = db.Column(db.String(64), nullable=False)
    branch_id = db.Column(db.Integer, nullable=False, index=True)
    till = db.Column(db.String(32), nullable=False, default="MAIN")

    opened_by_actor_id = db.Column(db.Integer, nullable=False)
    closed_by_actor_id = db.Column(db.Integer, nullable=True)

    status = db.Column(enum_type(SessionStatus, "pos_session_status"), nullable=False, default=SessionStatus.OPEN, index=True)

    # Cash tracking (all amounts in cents)
    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_cash_cents = db.Column(db.Integer, nullable=True)
    expected_cash_cents = db.Column(db.Integer, nullable=True)  # opening + cash sales, set on close
    cash_difference_cents = db.Column(db.Integer, nullable=True)  # counted - expected

    # Running totals, applied one payment at a time
    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    cash_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    card_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    jazzcash_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_refunds_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    closed_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    SUBTOTAL_COLUMNS = {
        PaymentMethod.CASH: "cash_sales_cents",
        PaymentMethod.CARD: "card_sales_cents",
        PaymentMethod.JAZZCASH: "jazzcash_sales_cents",
    }

    @property
    def is_open(self) -> bool:
        return self.status == SessionStatus.OPEN

    @property
    def expected_cash(self):
        """Opening float plus cash sales (live while open, frozen on close)."""
        if self.expected_cash_cents is not None:
            return from_cents(self.expected_cash_cents)
        return from_cents(self.opening_cash_cents + self.cash_sales_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_number": self.session_number,
            "branch_id": self.branch_id,
            "till": self.till,
            "status": self.status.value,
            "opened_by_actor_id": self.opened_by_actor_id,
            "closed_by_actor_id": self.closed_by_actor_id,
            "opening_cash": str(from_cents(self.opening_cash_cents)),
            "closing_cash": str(from_cents(self.closing_cash_cents)) if self.closing_cash_cents is not None else None,
            "expected_cash": str(self.expected_cash),
            "cash_difference": (
                str(from_cents(self.cash_difference_cents)) if self.cash_difference_cents is not None else None
            ),
            "total_sales": str(from_cents(self.total_sales_cents)),
            "total_orders": self.total_orders,
            "cash_sales": str(from_cents(self.cash_sales_cents)),
            "card_sales": str(from_cents(self.card_sales_cents)),
            "jazzcash_sales": str(from_cents(self.jazzcash_sales_cents)),
            "total_refunds": str(from_cents(self.total_refunds_cents)),
            "notes": self.notes,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "version_id": self.version_id,
        }


class SessionPaymentApplication(db.Model):
    """
    One row per payment applied to a session's running totals.

    The unique payment_id makes the session hook idempotent: a replayed or
    retried notification finds its row and changes nothing.
    """
    __tablename__ = "session_payment_applications"
    __table_args__ = (
        db.UniqueConstraint("payment_id", name="uq_session_applications_payment"),
        db.Index("ix_session_applications_session_order", "session_id", "order_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("pos_sessions.id"), nullable=False, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payment_records.id"), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)

    method = db.Column(enum_type(PaymentMethod, "session_application_method"), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    counted_order = db.Column(db.Boolean, nullable=False, default=False)

    applied_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "payment_id": self.payment_id,
            "order_id": self.order_id,
            "method": self.method.value,
            "amount": str(from_cents(self.amount_cents)),
            "counted_order": self.counted_order,
            "applied_at": to_utc_z(self.applied_at),
        }
