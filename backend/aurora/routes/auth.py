# Overview: Flask API routes for auth operations; login, logout and the current user.

from flask import Blueprint, request, jsonify, g

from ..services import auth_service, session_service
from ..decorators import require_auth
from . import internal_error


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate by email and password and open a session.

    The returned token goes in the Authorization header as "Bearer <token>".
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user = auth_service.authenticate(email, password)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": session.expires_at.isoformat() + "Z",
        }), 200

    except Exception:
        return internal_error("Login failed")


@auth_bp.post("/logout")
@require_auth
def logout_route():
    token = request.headers.get("Authorization").split(" ", 1)[1]
    session_service.revoke_session(token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200
