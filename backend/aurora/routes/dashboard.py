# Overview: Flask API routes for dashboard aggregates.

from flask import Blueprint, jsonify

from ..extensions import db
from ..models import PDV
from ..services import dashboard_service
from ..decorators import require_auth, require_role, can_access_pdv
from ..models.users import ROLE_ADMIN
from . import not_found, forbidden


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/admin")
@require_auth
@require_role(ROLE_ADMIN)
def admin_dashboard_route():
    stats = dashboard_service.admin_stats()
    stats["recent"] = dashboard_service.recent_activity()
    return jsonify(stats), 200


@dashboard_bp.get("/pdv/<int:pdv_id>")
@require_auth
def pdv_dashboard_route(pdv_id: int):
    pdv = db.session.get(PDV, pdv_id)
    if not pdv:
        return not_found("PDV")
    if not can_access_pdv(pdv):
        return forbidden()
    return jsonify(dashboard_service.pdv_stats(pdv_id)), 200
