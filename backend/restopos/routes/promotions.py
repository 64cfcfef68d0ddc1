from __future__ import annotations

from flask import Blueprint, jsonify, request, g

from ..decorators import require_actor, require_role, require_staff, domain_errors, get_json_body
from ..errors import InvalidDiscount, InvalidPromoCode
from ..models import ActorRole
from ..services import discount_service

promotions_bp = Blueprint("promotions", __name__)


@promotions_bp.route("/api/discounts/manual", methods=["POST"])
@require_actor
@require_staff
@domain_errors
def manual_discount_quote():
    data = get_json_body()
    result = discount_service.apply_manual_discount(
        data.get("subtotal"),
        data.get("discount_type"),
        data.get("value"),
        data.get("reason"),
    )
    return jsonify(result.to_dict())


@promotions_bp.route("/api/discounts/promo/preview", methods=["POST"])
@require_actor
@domain_errors
def promo_preview():
    data = get_json_body()
    if not data.get("code"):
        raise InvalidDiscount("code is required", field="code")
    if not data.get("branch_id"):
        raise InvalidDiscount("branch_id is required", field="branch_id")
    result = discount_service.preview_promo_code(
        data["code"],
        data.get("subtotal"),
        data["branch_id"],
        user_id=data.get("user_id") or g.actor_id,
    )
    return jsonify(result.to_dict())


@promotions_bp.route("/api/promo-codes", methods=["GET"])
@require_actor
@require_staff
@domain_errors
def list_promo_codes():
    branch_id = request.args.get("branch_id", type=int)
    active_only = request.args.get("active_only", "false").lower() == "true"
    promos = discount_service.list_promo_codes(branch_id, active_only)
    return jsonify({"promo_codes": [p.to_dict() for p in promos]})


@promotions_bp.route("/api/promo-codes", methods=["POST"])
@require_actor
@require_role(ActorRole.ADMIN)
@domain_errors
def create_promo_code():
    data = get_json_body()
    required = ("code", "discount_type", "discount_value")
    missing = [f for f in required if f not in data]
    if missing:
        raise InvalidPromoCode(f"Missing required fields: {', '.join(missing)}", field=missing[0])
    promo = discount_service.create_promo_code(data["code"], data)
    return jsonify({"promo_code": promo.to_dict()}), 201


@promotions_bp.route("/api/promo-codes/<int:promo_id>", methods=["PATCH"])
@require_actor
@require_role(ActorRole.ADMIN)
@domain_errors
def update_promo_code(promo_id: int):
    promo = discount_service.update_promo_code(promo_id, get_json_body())
    return jsonify({"promo_code": promo.to_dict()})


@promotions_bp.route("/api/promo-codes/<int:promo_id>/redemptions", methods=["GET"])
@require_actor
@require_staff
@domain_errors
def promo_redemptions(promo_id: int):
    redemptions = discount_service.get_promo_redemptions(promo_id)
    return jsonify({"redemptions": [r.to_dict() for r in redemptions]})
