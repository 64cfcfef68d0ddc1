# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

- Checkout: prices the cart server-side (discount, delivery fee) and
  creates the order
- Status changes: staff/admin only, validated against the order state machine
- Event history per order
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_actor, require_staff, domain_errors, get_json_body
from ..errors import InvalidOrder
from ..models import ActorRole
from ..services import order_service

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_actor
@domain_errors
def create_order_route():
    """
    Place an order.

    Request body:
    {
        "branch_id": 1,
        "order_type": "delivery" | "pickup" | "dine-in",
        "order_source": "online" | "pos" | "phone",   (default: online)
        "payment_method": "cash" | "card" | "jazzcash" | "split",
        "items": [{"item_id": "burger", "quantity": 2, "unit_price": "450.00",
                   "name": "Zinger", "variants": ["Large"], "notes": "no onions"}],
        "customer": {"customer_id": 7, "name": "...", "phone": "...", "address": "..."},
        "distance_km": "4.5",                         (delivery, distance pricing)
        "promo_code": "WELCOME10",                    (optional)
        "manual_discount": {"discount_type": "percentage", "value": "10", "reason": "..."},  (staff only)
        "session_id": 3, "till": "MAIN", "table_id": 2, (POS, optional)
        "notes": "...",
        "expected_total": "1234.00"                   (advisory)
    }

    Returns:
        201: Order created
        400/403/404/409/422: Domain error
    """
    data = get_json_body()

    branch_id = data.get("branch_id")
    if not branch_id:
        raise InvalidOrder("branch_id is required", field="branch_id")
    if not data.get("order_type"):
        raise InvalidOrder("order_type is required", field="order_type")

    customer = dict(data.get("customer") or {})
    if g.actor_role == ActorRole.CUSTOMER and g.actor_id is not None:
        customer.setdefault("customer_id", g.actor_id)

    order = order_service.checkout(
        branch_id,
        data.get("items") or [],
        data["order_type"],
        customer,
        actor_role=g.actor_role,
        actor_id=g.actor_id,
        promo_code=data.get("promo_code"),
        manual_discount=data.get("manual_discount"),
        distance_km=data.get("distance_km"),
        order_source=data.get("order_source", "online"),
        payment_method=data.get("payment_method", "cash"),
        session_id=data.get("session_id"),
        till=data.get("till"),
        table_id=data.get("table_id"),
        notes=data.get("notes"),
        expected_total=data.get("expected_total"),
    )
    return jsonify({"order": order.to_dict()}), 201


@orders_bp.get("")
@require_actor
@require_staff
@domain_errors
def list_orders_route():
    orders = order_service.list_orders(
        branch_id=request.args.get("branch_id", type=int),
        status=request.args.get("status"),
        session_id=request.args.get("session_id", type=int),
        limit=min(request.args.get("limit", 100, type=int), 500),
    )
    return jsonify({"orders": [o.to_dict(include_items=False) for o in orders]})


@orders_bp.get("/<int:order_id>")
@require_actor
@domain_errors
def get_order_route(order_id: int):
    order = order_service.get_order(order_id)
    if g.actor_role == ActorRole.CUSTOMER and (g.actor_id is None or order.customer_id != g.actor_id):
        return jsonify({"error": "Order not found", "code": "ORDER_NOT_FOUND"}), 404
    return jsonify({"order": order.to_dict()})


@orders_bp.get("/by-number/<order_number>")
@require_actor
@require_staff
@domain_errors
def get_order_by_number_route(order_number: str):
    return jsonify({"order": order_service.get_order_by_number(order_number).to_dict()})


@orders_bp.post("/<int:order_id>/status")
@require_actor
@domain_errors
def update_status_route(order_id: int):
    """
    Change order status.

    Request body: {"status": "preparing"}

    Customers receive 403 (TRANSITION_FORBIDDEN); illegal edges 409
    (INVALID_TRANSITION) and the order is left untouched.
    """
    data = get_json_body()
    requested = data.get("status")
    if not requested:
        raise InvalidOrder("status is required", field="status")

    order = order_service.update_order_status(order_id, requested, g.actor_role, actor_id=g.actor_id)
    return jsonify({"order": order.to_dict()})


@orders_bp.get("/<int:order_id>/events")
@require_actor
@require_staff
@domain_errors
def order_events_route(order_id: int):
    events = order_service.get_order_events(order_id)
    return jsonify({"events": [e.to_dict() for e in events]})
