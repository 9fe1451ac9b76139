# Overview: Flask API routes for customers; lookup at the counter and maintenance.

from flask import Blueprint, request, jsonify, g

from ..extensions import db
from ..models import PDV
from ..services import customer_service, return_service
from ..services.customer_service import CustomerError
from ..decorators import require_auth, require_role, can_access_pdv
from ..models.users import ROLE_ADMIN
from . import internal_error, not_found, forbidden


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
def list_customers_route():
    """All customers for admins; otherwise the customers registered by one PDV (?pdv_id=)."""
    pdv_id = request.args.get("pdv_id", type=int)
    if pdv_id is None:
        if g.current_user.role != ROLE_ADMIN:
            return jsonify({"error": "pdv_id required"}), 400
        customers = customer_service.list_customers()
    else:
        if not can_access_pdv(db.session.get(PDV, pdv_id)):
            return forbidden()
        customers = customer_service.list_by_pdv(pdv_id)
    return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)}), 200


@customers_bp.get("/lookup")
@require_auth
def lookup_customer_route():
    """Find a customer by whatsapp first, then CPF."""
    customer = (
        customer_service.find_by_whatsapp(request.args.get("whatsapp"))
        or customer_service.find_by_cpf(request.args.get("cpf"))
    )
    if not customer:
        return not_found("Customer")
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.get("/birthdays")
@require_auth
def birthdays_route():
    try:
        month = request.args.get("month", type=int)
        if month is None:
            return jsonify({"error": "month required"}), 400
        customers = customer_service.birthdays_of_month(month)
        return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)}), 200

    except CustomerError as e:
        return jsonify({"error": str(e)}), 400


@customers_bp.get("/<int:customer_id>/credit")
@require_auth
def customer_credit_route(customer_id: int):
    return jsonify({
        "customer_id": customer_id,
        "available_credit_cents": return_service.available_credit(customer_id),
    }), 200


@customers_bp.post("")
@require_auth
def create_customer_route():
    try:
        customer = customer_service.create_customer(request.get_json(silent=True) or {})
        return jsonify({"customer": customer.to_dict()}), 201

    except CustomerError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to create customer")


@customers_bp.patch("/<int:customer_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_customer_route(customer_id: int):
    try:
        customer = customer_service.update_customer(customer_id, request.get_json(silent=True) or {})
        return jsonify({"customer": customer.to_dict()}), 200

    except CustomerError as e:
        if "not found" in str(e):
            return not_found("Customer")
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to update customer")


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_customer_route(customer_id: int):
    try:
        customer_service.delete_customer(customer_id)
        return jsonify({"deleted": True, "customer_id": customer_id}), 200

    except CustomerError as e:
        if "not found" in str(e):
            return not_found("Customer")
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to delete customer")
