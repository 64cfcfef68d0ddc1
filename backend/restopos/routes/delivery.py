from __future__ import annotations

from flask import Blueprint, jsonify

from ..decorators import require_actor, require_role, require_staff, domain_errors, get_json_body
from ..errors import ValidationError
from ..models import ActorRole
from ..services import delivery_service

delivery_bp = Blueprint("delivery", __name__, url_prefix="/api/delivery")


@delivery_bp.route("/config/<int:branch_id>", methods=["GET"])
@require_actor
@require_staff
@domain_errors
def get_config(branch_id: int):
    config = delivery_service.get_delivery_config(branch_id)
    return jsonify({"config": config.to_dict() if config else None})


@delivery_bp.route("/config/<int:branch_id>", methods=["PUT"])
@require_actor
@require_role(ActorRole.ADMIN)
@domain_errors
def put_config(branch_id: int):
    config = delivery_service.upsert_delivery_config(branch_id, get_json_body())
    return jsonify({"config": config.to_dict()})


@delivery_bp.route("/quote", methods=["POST"])
@require_actor
@domain_errors
def quote():
    """Body: {"branch_id": 1, "subtotal": "1200.00", "distance_km": "4"}"""
    data = get_json_body()
    if not data.get("branch_id"):
        raise ValidationError("branch_id is required", field="branch_id")
    result = delivery_service.calculate_delivery_fee(
        data["branch_id"],
        data.get("subtotal"),
        data.get("distance_km"),
    )
    return jsonify(result.to_dict())
