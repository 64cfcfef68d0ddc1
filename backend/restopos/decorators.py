# Overview: Request decorators for API routes (actor context and role checks).

from functools import wraps
from flask import request, jsonify, g, current_app

from .errors import DomainError
from .models import ActorRole


ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"


def _is_authenticated() -> bool:
    return hasattr(g, "actor_role")


def require_actor(f):
    """
    Establish the acting user from the auth gateway headers.

    Authentication happens upstream; the gateway forwards the verified
    identity. Sets:
    - g.actor_id:   int or None (anonymous online customer)
    - g.actor_role: ActorRole

    Returns 401 if the role header is missing or unknown.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_role = request.headers.get(ACTOR_ROLE_HEADER)
        if not raw_role:
            return jsonify({"error": "Authentication required", "code": "AUTH_REQUIRED"}), 401

        try:
            role = ActorRole(raw_role.strip().lower())
        except ValueError:
            return jsonify({"error": f"Unknown actor role '{raw_role}'", "code": "AUTH_REQUIRED"}), 401

        raw_id = request.headers.get(ACTOR_ID_HEADER)
        try:
            actor_id = int(raw_id) if raw_id else None
        except ValueError:
            return jsonify({"error": "Invalid actor id", "code": "AUTH_REQUIRED"}), 401

        g.actor_id = actor_id
        g.actor_role = role
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: ActorRole):
    """
    Require one of the given roles. Apply after @require_actor.
    """
    allowed = {ActorRole(r) for r in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "code": "AUTH_REQUIRED"}), 401

            if g.actor_role not in allowed:
                current_app.logger.warning(
                    "Actor %s (%s) denied %s %s", g.actor_id, g.actor_role.value, request.method, request.path
                )
                return jsonify({
                    "error": "Permission denied",
                    "code": "PERMISSION_DENIED",
                    "required_roles": sorted(r.value for r in allowed),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_staff(f):
    return require_role(ActorRole.ADMIN, ActorRole.STAFF)(f)


def domain_errors(f):
    """
    Translate service errors to JSON responses.

    DomainError -> its http_status with {"error", "code", "kind", "field", "details"}
    anything else -> logged with traceback, 500
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except DomainError as e:
            if e.kind == "consistency":
                current_app.logger.warning("%s on %s %s: %s", e.code, request.method, request.path, e.message)
            return jsonify(e.to_dict()), e.http_status
        except Exception:
            current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
            return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500

    return decorated_function


def get_json_body() -> dict:
    """Request JSON object, or {} when the body is missing or not an object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
