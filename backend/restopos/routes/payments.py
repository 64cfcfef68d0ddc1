# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

"""
Payment Processing API Routes

DESIGN:
- Single-tender payments (cash change calculated automatically)
- Split payments across several tenders, all-or-nothing
- Verification of JazzCash/card submissions awaiting staff review
- Refunds as separate negative records
- The response reports whether the POS session accepted the payment;
  a rejected session update never undoes the payment
"""

from flask import Blueprint, jsonify, g

from ..decorators import require_actor, require_staff, domain_errors, get_json_body
from ..errors import InvalidAmount, InvalidPaymentMethod, OrderNotFound, ValidationError
from ..models import ActorRole
from ..services import order_service, payment_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _required_order_id(data: dict) -> int:
    order_id = data.get("order_id")
    if not order_id:
        raise ValidationError("order_id is required", field="order_id")
    return order_id


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("")
@require_actor
@domain_errors
def record_payment_route():
    """
    Record a single payment.

    Request body:
    {
        "order_id": 123,
        "method": "cash" | "card" | "jazzcash",
        "amount": "1000.00",
        "reference": "TXN-123",            (optional)
        "awaiting_verification": false     (optional, non-cash only)
    }

    Customers may only submit awaiting-verification payments for their
    own orders (online JazzCash flow).

    Returns:
        201: {"order", "payments", "change_amount", "session_applied", "session_error"}
    """
    data = get_json_body()
    order_id = _required_order_id(data)
    if not data.get("method"):
        raise InvalidPaymentMethod("method is required", field="method")
    if data.get("amount") in (None, ""):
        raise InvalidAmount("amount is required", field="amount")

    awaiting = bool(data.get("awaiting_verification", False))
    if g.actor_role == ActorRole.CUSTOMER:
        if g.actor_id is None:
            raise OrderNotFound(field="order_id")
        order = order_service.get_order(order_id)
        if order.customer_id != g.actor_id:
            raise OrderNotFound(field="order_id")
        awaiting = True

    outcome = payment_service.record_single_payment(
        order_id,
        data["method"],
        data["amount"],
        data.get("reference"),
        recorded_by=g.actor_id,
        awaiting_verification=awaiting,
    )
    return jsonify(outcome.to_dict()), 201


@payments_bp.post("/split")
@require_actor
@require_staff
@domain_errors
def record_split_payment_route():
    """
    Record a split payment.

    Request body:
    {
        "order_id": 123,
        "legs": [{"method": "cash", "amount": "700.00"},
                 {"method": "card", "amount": "300.00", "reference": "AUTH-1"}]
    }
    """
    data = get_json_body()
    outcome = payment_service.record_split_payment(
        _required_order_id(data),
        data.get("legs"),
        recorded_by=g.actor_id,
    )
    return jsonify(outcome.to_dict()), 201


# =============================================================================
# VERIFICATION & REFUNDS
# =============================================================================

@payments_bp.post("/<int:payment_id>/verify")
@require_actor
@require_staff
@domain_errors
def verify_payment_route(payment_id: int):
    outcome = payment_service.verify_payment(payment_id, verified_by=g.actor_id)
    return jsonify(outcome.to_dict())


@payments_bp.post("/<int:payment_id>/reject")
@require_actor
@require_staff
@domain_errors
def reject_payment_route(payment_id: int):
    data = get_json_body()
    outcome = payment_service.reject_payment(payment_id, data.get("reason"), rejected_by=g.actor_id)
    return jsonify(outcome.to_dict())


@payments_bp.post("/<int:payment_id>/refund")
@require_actor
@require_staff
@domain_errors
def refund_payment_route(payment_id: int):
    """
    Refund a payment.

    Request body: {"amount": "250.00", "reason": "Wrong item"}  (amount optional: full refund)
    """
    data = get_json_body()
    outcome = payment_service.refund_payment(
        payment_id,
        data.get("amount"),
        data.get("reason"),
        recorded_by=g.actor_id,
    )
    return jsonify(outcome.to_dict()), 201


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("/orders/<int:order_id>")
@require_actor
@require_staff
@domain_errors
def get_order_payments_route(order_id: int):
    """Payment summary and history for an order."""
    summary = payment_service.get_payment_summary(order_id)
    payments = payment_service.get_order_payments(order_id)
    return jsonify({"summary": summary, "payments": [p.to_dict() for p in payments]})


@payments_bp.get("/<int:payment_id>")
@require_actor
@require_staff
@domain_errors
def get_payment_route(payment_id: int):
    return jsonify({"payment": payment_service.get_payment(payment_id).to_dict()})
