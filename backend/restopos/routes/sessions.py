# Overview: Flask API routes for POS sessions (cashier shifts).

from flask import Blueprint, request, jsonify, g

from ..decorators import require_actor, require_staff, domain_errors, get_json_body
from ..errors import InvalidAmount, SessionNotFound, ValidationError
from ..services import session_service

sessions_bp = Blueprint("pos_sessions", __name__, url_prefix="/api/pos/sessions")


@sessions_bp.post("")
@require_actor
@require_staff
@domain_errors
def open_session_route():
    """
    Open a session on a till.

    Request body: {"branch_id": 1, "opening_cash": "1000.00", "till": "MAIN", "notes": "..."}

    Returns:
        201: Session opened
        409: SESSION_ALREADY_OPEN
    """
    data = get_json_body()
    if not data.get("branch_id"):
        raise ValidationError("branch_id is required", field="branch_id")
    if data.get("opening_cash") in (None, ""):
        raise InvalidAmount("opening_cash is required", field="opening_cash")

    session = session_service.open_session(
        data["branch_id"],
        data.get("cashier_id") or g.actor_id,
        data["opening_cash"],
        till=data.get("till"),
        notes=data.get("notes"),
    )
    return jsonify({"session": session.to_dict()}), 201


@sessions_bp.get("")
@require_actor
@require_staff
@domain_errors
def list_sessions_route():
    status = request.args.get("status")
    if status and status not in ("open", "closed"):
        raise ValidationError("status must be open or closed", field="status")
    sessions = session_service.list_sessions(
        branch_id=request.args.get("branch_id", type=int),
        status=status,
        limit=min(request.args.get("limit", 50, type=int), 200),
    )
    return jsonify({"sessions": [s.to_dict() for s in sessions]})


@sessions_bp.get("/active")
@require_actor
@require_staff
@domain_errors
def active_session_route():
    branch_id = request.args.get("branch_id", type=int)
    if not branch_id:
        raise ValidationError("branch_id is required", field="branch_id")
    session = session_service.get_active_session(branch_id, request.args.get("till"))
    if session is None:
        raise SessionNotFound("No open session on this till", field="till")
    return jsonify({"session": session.to_dict()})


@sessions_bp.get("/<int:session_id>")
@require_actor
@require_staff
@domain_errors
def get_session_route(session_id: int):
    return jsonify({"session": session_service.get_session(session_id).to_dict()})


@sessions_bp.post("/<int:session_id>/close")
@require_actor
@require_staff
@domain_errors
def close_session_route(session_id: int):
    """
    Close a session with the counted drawer cash.

    Request body: {"counted_cash": "5400.00", "notes": "..."}

    Returns expected_cash and cash_difference (counted - expected).
    """
    data = get_json_body()
    if data.get("counted_cash") in (None, ""):
        raise InvalidAmount("counted_cash is required", field="counted_cash")

    result = session_service.close_session(
        session_id,
        data["counted_cash"],
        data.get("notes"),
        closed_by=g.actor_id,
    )
    return jsonify(result.to_dict())


@sessions_bp.get("/<int:session_id>/summary")
@require_actor
@require_staff
@domain_errors
def session_summary_route(session_id: int):
    return jsonify(session_service.get_session_summary(session_id))


@sessions_bp.get("/<int:session_id>/audit")
@require_actor
@require_staff
@domain_errors
def session_audit_route(session_id: int):
    return jsonify(session_service.audit_session(session_id))
