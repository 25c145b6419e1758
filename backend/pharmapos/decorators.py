# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer session token.

    Sets g.current_user to the authenticated User.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"success": False, "error": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"success": False, "error": "Invalid or expired token"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require one of the given roles. SUPER_ADMIN passes every role check.

    Must be stacked under @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"success": False, "error": "Authentication required"}), 401

            user = g.current_user
            if user.role == "SUPER_ADMIN" or user.role in roles:
                return f(*args, **kwargs)

            current_app.logger.warning(
                "Role check failed: user %s (%s) on %s %s, requires %s",
                user.id, user.role, request.method, request.path, ", ".join(roles),
            )
            return jsonify({
                "success": False,
                "error": "Permission denied",
                "required_roles": list(roles),
            }), 403

        return decorated_function
    return decorator
