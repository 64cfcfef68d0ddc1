from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..decorators import require_actor, require_staff, domain_errors
from ..errors import ValidationError
from ..services import kitchen_service

kitchen_bp = Blueprint("kitchen", __name__, url_prefix="/api/kitchen")


@kitchen_bp.route("/tickets", methods=["GET"])
@require_actor
@require_staff
@domain_errors
def list_tickets():
    """Poll tickets for a branch; pass the last seen id as after_id."""
    branch_id = request.args.get("branch_id", type=int)
    if not branch_id:
        raise ValidationError("branch_id is required", field="branch_id")
    events = kitchen_service.list_kitchen_tickets(
        branch_id,
        after_id=request.args.get("after_id", type=int),
        limit=min(request.args.get("limit", 100, type=int), 500),
    )
    return jsonify({
        "tickets": [{"id": e.id, "occurred_at": e.to_dict()["occurred_at"], **e.payload} for e in events],
        "last_id": events[-1].id if events else request.args.get("after_id", type=int),
    })
