# Overview: Request decorators for API routes (authenticated actor and role checks).

from dataclasses import dataclass
from functools import wraps
from flask import request, jsonify, g

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_CASHIER = "cashier"
ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER)


@dataclass(frozen=True)
class Actor:
    """Authenticated identity supplied by the upstream gateway."""
    id: int
    role: str


def _is_authenticated() -> bool:
    return hasattr(g, 'actor')


def require_actor(f):
    """
    Require an authenticated actor and expose it as g.actor.

    Authentication itself happens upstream; the gateway forwards the
    identity in X-Actor-Id / X-Actor-Role. Returns 401 when either header is
    missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_id = (request.headers.get("X-Actor-Id") or "").strip()
        role = (request.headers.get("X-Actor-Role") or "").strip().lower()

        if not raw_id or not role:
            return jsonify({"error": "Authentication required"}), 401
        if not raw_id.isdigit() or role not in ROLES:
            return jsonify({"error": "Invalid actor identity"}), 401

        g.actor = Actor(id=int(raw_id), role=role)
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """
    Require the actor's role to be one of roles.

    Must be stacked below @require_actor.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.actor.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                    "message": f"Requires one of: {', '.join(roles)}"
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
