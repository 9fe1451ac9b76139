# Overview: Flask API routes for inventory levels and physical audits.

from flask import Blueprint, request, jsonify, g

from ..services import inventory_service
from ..services.inventory_service import InventoryError
from ..services.movement_service import MovementError
from ..services.locations import Location
from ..validation import ValidationError, coerce_int, require_fields
from ..decorators import require_auth, require_role, can_access_location
from ..models.users import ROLE_ADMIN, ROLE_PROMOTER
from . import internal_error, forbidden


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/central")
@require_auth
@require_role(ROLE_ADMIN)
def central_levels_route():
    levels = inventory_service.levels_for_central()
    return jsonify({"items": levels, "count": len(levels)}), 200


@inventory_bp.get("/<location_type>/<int:location_id>")
@require_auth
def location_items_route(location_type: str, location_id: int):
    try:
        location = Location.parse(location_type, location_id)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if not can_access_location(location):
        return forbidden()

    try:
        items = inventory_service.items_for(location)
        return jsonify({"location": location.to_dict(), "items": items, "count": len(items)}), 200
    except InventoryError as e:
        return jsonify({"error": str(e)}), 400


@inventory_bp.post("/<location_type>/<int:location_id>/audit")
@require_auth
@require_role(ROLE_ADMIN, ROLE_PROMOTER)
def audit_route(location_type: str, location_id: int):
    """
    Reconcile a physical count.

    Body: {counts: [{product_id, quantity}, ...]}. Differences become ADJUSTMENT
    movements written in one transaction.
    """
    try:
        location = Location.parse(location_type, location_id)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if not can_access_location(location):
        return forbidden()

    try:
        counts = (request.get_json(silent=True) or {}).get("counts")
        if not isinstance(counts, list):
            return jsonify({"error": "counts must be a list"}), 400
        if not all(isinstance(row, dict) for row in counts):
            return jsonify({"error": "each count must be an object"}), 400
        counted: dict[int, int] = {}
        for row in counts:
            require_fields(row, "product_id", "quantity")
            product_id = coerce_int(row["product_id"], "product_id")
            if product_id in counted:
                return jsonify({"error": f"Product {product_id} counted more than once"}), 400
            counted[product_id] = coerce_int(row["quantity"], "quantity")
        adjustments = inventory_service.audit_location(location, counted, actor_user_id=g.current_user.id)
        return jsonify({"items": [m.to_dict() for m in adjustments], "count": len(adjustments)}), 201

    except (InventoryError, MovementError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to audit location")
