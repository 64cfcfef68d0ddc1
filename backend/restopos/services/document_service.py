# Overview: Atomic allocation of human-readable order and session numbers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import business_date


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _next_number(branch_id: int, document_type: str) -> int:
    """
    Atomically allocate the next number for a branch/type.

    The increment is a single UPDATE, so the row lock taken by the database
    serializes concurrent callers. Runs inside the caller's transaction.
    """
    if not branch_id:
        raise DocumentSequenceError("branch_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.branch_id == branch_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        seq = DocumentSequence(branch_id=branch_id, document_type=document_type, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            return 1
        except IntegrityError:
            # Another request created the row first; take the next slot
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(branch_id=branch_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_order_number(branch_id: int) -> str:
    """ORD-<yyyymmdd>-<branch>-<seq>; the sequence restarts every day."""
    day = business_date()
    seq = _next_number(branch_id, f"ORDER-{day}")
    return f"ORD-{day}-{branch_id:03d}-{seq:04d}"


def next_session_number(branch_id: int) -> str:
    seq = _next_number(branch_id, "POS_SESSION")
    return f"SES-{branch_id:03d}-{seq:05d}"
