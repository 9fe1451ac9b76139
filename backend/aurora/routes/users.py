# Overview: Flask API routes for user administration.

from flask import Blueprint, request, jsonify

from ..services import auth_service
from ..services.auth_service import AuthError
from ..decorators import require_auth, require_role
from ..models.users import ROLE_ADMIN
from . import internal_error


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_role(ROLE_ADMIN)
def list_users_route():
    users = auth_service.list_users(role=request.args.get("role"))
    return jsonify({"items": [u.to_dict() for u in users], "count": len(users)}), 200


@users_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_user_route():
    """
    Create a user.

    Body: {name, email, password, role, promoter_level?, superior_id?, whatsapp?, region?}
    """
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.create_user(
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password") or "",
            role=data.get("role"),
            promoter_level=data.get("promoter_level"),
            superior_id=data.get("superior_id"),
            whatsapp=data.get("whatsapp"),
            region=data.get("region"),
        )
        return jsonify({"user": user.to_dict()}), 201

    except AuthError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to create user")


@users_bp.patch("/<int:user_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_user_route(user_id: int):
    try:
        user = auth_service.update_user(user_id, request.get_json(silent=True) or {})
        return jsonify({"user": user.to_dict()}), 200

    except AuthError as e:
        status = 404 if "not found" in str(e) else 400
        return jsonify({"error": str(e)}), status
    except Exception:
        return internal_error("Failed to update user")
