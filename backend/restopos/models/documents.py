from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    Per-branch counters for human-readable numbers (orders, POS sessions).

    WHY: Allocation is an atomic UPDATE on one row, so concurrent checkouts
    never receive the same number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "document_type", name="uq_document_sequences_branch_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
