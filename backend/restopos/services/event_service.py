# Overview: Append-only order event log (audit trail and kitchen outbox).

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import OrderEvent

"""
Event log invariants

- Append-only: no updates or deletes of existing events.
- Events are written inside the same DB transaction as the change they
  record, so an event exists if and only if its change committed.
- occurred_at is business time; defaults to now.
"""


def append_event(
    *,
    branch_id: int,
    event_type: str,
    order_id: int | None = None,
    payment_id: int | None = None,
    session_id: int | None = None,
    actor_id: int | None = None,
    from_status: str | None = None,
    to_status: str | None = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
    occurred_at: Optional[datetime] = None,
) -> OrderEvent:
    ev = OrderEvent(
        branch_id=branch_id,
        event_type=event_type,
        order_id=order_id,
        payment_id=payment_id,
        session_id=session_id,
        actor_id=actor_id,
        from_status=from_status,
        to_status=to_status,
        note=note[:255] if note else None,
        payload=payload,
    )
    if occurred_at is not None:
        ev.occurred_at = occurred_at

    db.session.add(ev)
    db.session.flush()
    return ev


def list_events(
    *,
    order_id: int | None = None,
    session_id: int | None = None,
    branch_id: int | None = None,
    event_type: str | None = None,
    after_id: int | None = None,
    limit: int = 200,
) -> list[OrderEvent]:
    q = db.session.query(OrderEvent)
    if order_id is not None:
        q = q.filter(OrderEvent.order_id == order_id)
    if session_id is not None:
        q = q.filter(OrderEvent.session_id == session_id)
    if branch_id is not None:
        q = q.filter(OrderEvent.branch_id == branch_id)
    if event_type is not None:
        q = q.filter(OrderEvent.event_type == event_type)
    if after_id is not None:
        q = q.filter(OrderEvent.id > after_id)
    return q.order_by(OrderEvent.id.asc()).limit(limit).all()
