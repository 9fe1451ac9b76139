# Overview: Flask API routes for PDVs and promoter portfolios.

from flask import Blueprint, request, jsonify, g

from ..services import pdv_service, dashboard_service
from ..services.pdv_service import PDVError
from ..validation import ValidationError
from ..decorators import require_auth, require_role, can_access_pdv
from ..models.users import ROLE_ADMIN, ROLE_PROMOTER, ROLE_PARTNER
from . import internal_error, not_found, forbidden


pdvs_bp = Blueprint("pdvs", __name__, url_prefix="/api/pdvs")


@pdvs_bp.get("")
@require_auth
def list_pdvs_route():
    """Admins list the network (?include_inactive=1 for closed PDVs); promoters their portfolio; partners their counter."""
    user = g.current_user
    if user.role == ROLE_ADMIN:
        pdvs = pdv_service.list_pdvs(include_inactive=request.args.get("include_inactive") == "1")
    elif user.role == ROLE_PROMOTER:
        pdvs = pdv_service.list_by_promoter(user.id)
    else:
        pdv = pdv_service.get_by_partner(user.id)
        pdvs = [pdv] if pdv else []
    return jsonify({"items": [p.to_dict() for p in pdvs], "count": len(pdvs)}), 200


@pdvs_bp.get("/mine")
@require_auth
@require_role(ROLE_PARTNER)
def my_pdv_route():
    pdv = pdv_service.get_by_partner(g.current_user.id)
    if not pdv:
        return not_found("PDV")
    return jsonify({"pdv": pdv.to_dict()}), 200


@pdvs_bp.get("/portfolio")
@require_auth
@require_role(ROLE_PROMOTER)
def portfolio_route():
    """The caller's PDVs with stock value and month-to-date sales (admins pass promoter_id)."""
    promoter_id = request.args.get("promoter_id", type=int) if g.current_user.role == ROLE_ADMIN else None
    try:
        items = dashboard_service.promoter_portfolio(promoter_id or g.current_user.id)
        return jsonify({"items": items, "count": len(items)}), 200
    except Exception:
        return internal_error("Failed to load portfolio")


@pdvs_bp.get("/<int:pdv_id>")
@require_auth
def get_pdv_route(pdv_id: int):
    pdv = pdv_service.get_pdv(pdv_id)
    if not pdv:
        return not_found("PDV")
    if not can_access_pdv(pdv):
        return forbidden()
    return jsonify({"pdv": pdv.to_dict()}), 200


@pdvs_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_pdv_route():
    try:
        pdv = pdv_service.create_pdv(request.get_json(silent=True))
        return jsonify({"pdv": pdv.to_dict()}), 201

    except (PDVError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to create PDV")


@pdvs_bp.patch("/<int:pdv_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_pdv_route(pdv_id: int):
    try:
        pdv = pdv_service.update_pdv(pdv_id, request.get_json(silent=True))
        return jsonify({"pdv": pdv.to_dict()}), 200

    except PDVError as e:
        status = 404 if "not found" in str(e) and f"PDV {pdv_id}" in str(e) else 400
        return jsonify({"error": str(e)}), status
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to update PDV")


@pdvs_bp.delete("/<int:pdv_id>")
@require_auth
@require_role(ROLE_ADMIN)
def deactivate_pdv_route(pdv_id: int):
    """Close a PDV; its history stays."""
    try:
        pdv = pdv_service.deactivate_pdv(pdv_id)
        return jsonify({"pdv": pdv.to_dict()}), 200

    except PDVError as e:
        status = 404 if str(e) == f"PDV {pdv_id} not found" else 400
        return jsonify({"error": str(e)}), status
    except Exception:
        return internal_error("Failed to deactivate PDV")
