# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .permissions import role_has_permission
from .services import user_service


ACTOR_HEADER = "X-Actor-Id"


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Resolve the acting user for this request.

    Authentication happens upstream; the gateway in front of this service
    forwards the authenticated user id in the X-Actor-Id header. Sets
    g.current_user to the active User.

    Returns 401 if the header is missing, malformed, or names no active user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(ACTOR_HEADER, "").strip()

        if not raw:
            return jsonify({"error": "Unauthorized", "message": "Authentication required"}), 401

        try:
            actor_id = int(raw)
        except ValueError:
            return jsonify({"error": "Unauthorized", "message": f"{ACTOR_HEADER} must be an integer"}), 401

        user = user_service.get_active_user(actor_id)
        if user is None:
            return jsonify({"error": "Unauthorized", "message": "Unknown or inactive user"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require the acting user's role to grant permission_code."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Unauthorized", "message": "Authentication required"}), 401

            user = g.current_user
            if not role_has_permission(user.role, permission_code):
                current_app.logger.warning(
                    "Permission denied: user %s (%s) lacks %s for %s %s",
                    user.id,
                    user.role,
                    permission_code,
                    request.method,
                    request.path,
                )
                return jsonify({
                    "error": "Unauthorized",
                    "required_permission": permission_code,
                    "message": f"Role '{user.role}' lacks permission {permission_code}",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
