# Overview: Flask API routes for customer returns at a PDV.

from flask import Blueprint, request, jsonify, g

from ..extensions import db
from ..models import PDV
from ..services import return_service
from ..services.return_service import ReturnError
from ..validation import ValidationError, coerce_int
from ..decorators import require_auth, require_role, can_access_pdv
from ..models.users import ROLE_PARTNER
from . import internal_error, forbidden


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("")
@require_auth
@require_role(ROLE_PARTNER)
def create_return_route():
    """
    Record a customer return; the piece goes back into the PDV's stock.

    Body: {pdv_id, product_id, quantity, reason, customer_id?, credit_cents?, notes?}
    """
    try:
        data = request.get_json(silent=True) or {}
        pdv_id = coerce_int(data.get("pdv_id"), "pdv_id")
        if not can_access_pdv(db.session.get(PDV, pdv_id)):
            return forbidden()

        customer_id = data.get("customer_id")
        credit = data.get("credit_cents")
        record = return_service.create_return(
            pdv_id=pdv_id,
            product_id=coerce_int(data.get("product_id"), "product_id"),
            quantity=coerce_int(data.get("quantity"), "quantity"),
            reason=data.get("reason") or "",
            actor_user_id=g.current_user.id,
            customer_id=coerce_int(customer_id, "customer_id") if customer_id is not None else None,
            credit_cents=coerce_int(credit, "credit_cents") if credit is not None else None,
            notes=data.get("notes"),
        )
        return jsonify({"return": record.to_dict()}), 201

    except (ReturnError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to record return")


@returns_bp.get("")
@require_auth
def list_returns_route():
    pdv_id = request.args.get("pdv_id", type=int)
    if pdv_id is None:
        return jsonify({"error": "pdv_id required"}), 400
    if not can_access_pdv(db.session.get(PDV, pdv_id)):
        return forbidden()
    records = return_service.list_returns_for_pdv(pdv_id)
    return jsonify({"items": [r.to_dict() for r in records], "count": len(records)}), 200
