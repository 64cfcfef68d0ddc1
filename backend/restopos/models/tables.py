from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .enums import TableStatus, enum_type


class DiningTable(db.Model):
    """Dine-in table. A dine-in order occupies it until completed or cancelled."""
    __tablename__ = "dining_tables"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "table_number", name="uq_dining_tables_branch_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, nullable=False, index=True)
    table_number = db.Column(db.String(16), nullable=False)
    seats = db.Column(db.Integer, nullable=False, default=4)
    status = db.Column(enum_type(TableStatus, "dining_table_status"), nullable=False, default=TableStatus.AVAILABLE)
    current_order_id = db.Column(db.Integer, nullable=True)  # orders.id; plain column to keep the schema acyclic

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "table_number": self.table_number,
            "seats": self.seats,
            "status": self.status.value,
            "current_order_id": self.current_order_id,
            "updated_at": to_utc_z(self.updated_at),
        }
