# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .services import session_service
from .models import PDV
from .models.inventory import LOCATION_PROMOTER, LOCATION_PDV
from .models.users import ROLE_ADMIN


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a bearer session token.

    Sets g.current_user and g.session_context.
    Returns 401 when the header is missing or the token is invalid, expired
    or revoked.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require one of the given roles. Admins pass every role check.

    Must be stacked under @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            role = g.current_user.role
            if role != ROLE_ADMIN and role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def can_access_pdv(pdv) -> bool:
    """Admins see every PDV; partners their own counter; promoters their portfolio."""
    user = g.current_user
    if user.role == ROLE_ADMIN:
        return True
    return pdv is not None and user.id in (pdv.partner_id, pdv.promoter_id)


def can_access_location(location) -> bool:
    user = g.current_user
    if user.role == ROLE_ADMIN:
        return True
    if location.type == LOCATION_PROMOTER:
        return location.id == user.id
    if location.type == LOCATION_PDV:
        return can_access_pdv(db.session.get(PDV, location.id))
    return False
