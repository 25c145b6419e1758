# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import auth_service
from ..services import session_service
from ..decorators import require_auth, bearer_token
from ..validation import require_fields


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be sent as "Authorization: Bearer <token>" on protected routes.
    """
    data = require_fields(request.get_json(silent=True), "username", "password")

    user = auth_service.authenticate(data["username"], data["password"])
    if not user:
        current_app.logger.warning("Failed login for %r from %s", data["username"], request.remote_addr)
        return jsonify({"success": False, "error": "Invalid credentials"}), 401

    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )

    return jsonify({
        "success": True,
        "data": {
            "user": user.to_dict(),
            "token": token,
            "expires_at": session.to_dict()["expires_at"],
        },
        "message": "Login successful",
    }), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(bearer_token())
    return jsonify({"success": True, "message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"success": True, "data": g.current_user.to_dict()}), 200
