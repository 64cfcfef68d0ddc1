from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..decorators import require_actor, require_role, require_staff, domain_errors, get_json_body
from ..errors import ValidationError
from ..models import ActorRole
from ..services import table_service

tables_bp = Blueprint("tables", __name__, url_prefix="/api/pos/tables")


@tables_bp.route("", methods=["GET"])
@require_actor
@require_staff
@domain_errors
def list_tables():
    branch_id = request.args.get("branch_id", type=int)
    if not branch_id:
        raise ValidationError("branch_id is required", field="branch_id")
    tables = table_service.list_tables(branch_id, request.args.get("status"))
    return jsonify({"tables": [t.to_dict() for t in tables]})


@tables_bp.route("", methods=["POST"])
@require_actor
@require_role(ActorRole.ADMIN)
@domain_errors
def create_table():
    data = get_json_body()
    if not data.get("branch_id"):
        raise ValidationError("branch_id is required", field="branch_id")
    table = table_service.create_table(data["branch_id"], data.get("table_number"), data.get("seats", 4))
    return jsonify({"table": table.to_dict()}), 201


@tables_bp.route("/<int:table_id>/status", methods=["POST"])
@require_actor
@require_staff
@domain_errors
def set_status(table_id: int):
    table = table_service.set_table_status(table_id, get_json_body().get("status"))
    return jsonify({"table": table.to_dict()})
