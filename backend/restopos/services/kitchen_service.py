# Overview: Kitchen ticket payloads published on the order event log.

"""
Kitchen tickets

The kitchen display is an external consumer. It polls kitchen.ticket events
(after_id cursor) and renders them; nothing here formats for print or screen.
"""

from __future__ import annotations

from ..models import Order, OrderEvent
from .event_service import append_event, list_events

KITCHEN_TICKET_EVENT = "kitchen.ticket"


def build_kitchen_ticket(order: Order) -> dict:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "branch_id": order.branch_id,
        "order_type": order.order_type.value,
        "status": order.status.value,
        "table_number": order.table.table_number if order.table is not None else None,
        "customer_name": order.customer_name,
        "notes": order.notes,
        "items": [
            {
                "item_id": item.item_id,
                "name": item.name,
                "quantity": item.quantity,
                "variants": list(item.variants or []),
                "notes": item.notes,
            }
            for item in order.items
        ],
    }


def publish_kitchen_ticket(order: Order, *, actor_id: int | None = None) -> OrderEvent:
    """Append a ticket for the order in the caller's transaction."""
    return append_event(
        branch_id=order.branch_id,
        event_type=KITCHEN_TICKET_EVENT,
        order_id=order.id,
        actor_id=actor_id,
        to_status=order.status.value,
        payload=build_kitchen_ticket(order),
    )


def list_kitchen_tickets(branch_id: int, after_id: int | None = None, limit: int = 100) -> list[OrderEvent]:
    return list_events(branch_id=branch_id, event_type=KITCHEN_TICKET_EVENT, after_id=after_id, limit=limit)
