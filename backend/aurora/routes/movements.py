# Overview: Flask API routes for the stock ledger; recording and confirming movements.

from flask import Blueprint, request, jsonify, g

from ..services import movement_service
from ..services.movement_service import MovementError
from ..services.locations import Location
from ..validation import ValidationError, coerce_int
from ..decorators import require_auth, require_role, can_access_location
from ..models.users import ROLE_ADMIN, ROLE_PROMOTER
from ..models.inventory import LOCATION_PROMOTER, LOCATION_PDV
from . import internal_error, forbidden


movements_bp = Blueprint("movements", __name__, url_prefix="/api/movements")


def _location(data) -> Location | None:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValidationError("Location must be an object {type, id}")
    try:
        return Location.from_dict(data)
    except ValueError as e:
        raise ValidationError(str(e))


def _entry(data: dict) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Each movement must be an object")
    return {
        "product_id": coerce_int(data.get("product_id"), "product_id"),
        "quantity": coerce_int(data.get("quantity"), "quantity"),
        "origin": _location(data.get("origin")),
        "destination": _location(data.get("destination")),
        "kind": str(data.get("kind") or "").upper(),
        "note": data.get("note"),
    }


def _may_send(entry: dict) -> bool:
    """Promoters move stock out of their own briefcase only; admins move anything."""
    if g.current_user.role == ROLE_ADMIN:
        return True
    origin = entry["origin"]
    return origin is not None and origin.type == LOCATION_PROMOTER and origin.id == g.current_user.id


@movements_bp.get("")
@require_auth
@require_role(ROLE_ADMIN)
def list_movements_route():
    limit = min(request.args.get("limit", default=200, type=int), 1000)
    movements = movement_service.list_movements(limit=limit)
    return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200


@movements_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_PROMOTER)
def record_movement_route():
    """
    Record one movement.

    Body: {product_id, quantity, kind, origin: {type, id}|null, destination: {type, id}|null, note?}
    """
    try:
        entry = _entry(request.get_json(silent=True) or {})
        if not _may_send(entry):
            return forbidden()
        movement = movement_service.record_movement(actor_user_id=g.current_user.id, **entry)
        return jsonify({"movement": movement.to_dict()}), 201

    except (MovementError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to record movement")


@movements_bp.post("/batch")
@require_auth
@require_role(ROLE_ADMIN, ROLE_PROMOTER)
def record_batch_route():
    """Record several movements atomically. Body: {movements: [...]}"""
    try:
        raw = (request.get_json(silent=True) or {}).get("movements")
        if not isinstance(raw, list) or not raw:
            return jsonify({"error": "movements must be a non-empty list"}), 400
        entries = [_entry(item) for item in raw]
        if not all(_may_send(entry) for entry in entries):
            return forbidden()
        movements = movement_service.record_batch(entries, actor_user_id=g.current_user.id)
        return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 201

    except (MovementError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to record movements")


@movements_bp.post("/central-intake")
@require_auth
@require_role(ROLE_ADMIN)
def central_intake_route():
    try:
        data = request.get_json(silent=True) or {}
        movement = movement_service.add_stock_to_central(
            product_id=coerce_int(data.get("product_id"), "product_id"),
            quantity=coerce_int(data.get("quantity"), "quantity"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except (MovementError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to add stock to central")


@movements_bp.post("/transfer-to-promoter")
@require_auth
@require_role(ROLE_ADMIN)
def transfer_to_promoter_route():
    try:
        data = request.get_json(silent=True) or {}
        movement = movement_service.transfer_to_promoter(
            product_id=coerce_int(data.get("product_id"), "product_id"),
            promoter_id=coerce_int(data.get("promoter_id"), "promoter_id"),
            quantity=coerce_int(data.get("quantity"), "quantity"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except (MovementError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to transfer stock")


@movements_bp.get("/pending")
@require_auth
def pending_route():
    """
    Unconfirmed transfers addressed to a location, grouped by day.

    Query: ?type=PROMOTER|PDV&id=<id>
    """
    try:
        location = Location.parse(request.args.get("type"), request.args.get("id"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if location.type not in (LOCATION_PROMOTER, LOCATION_PDV):
        return jsonify({"error": "Only PROMOTER and PDV locations receive pending transfers"}), 400
    if not can_access_location(location):
        return forbidden()

    movements = movement_service.pending_for(location)
    groups = movement_service.group_by_day(movements)
    return jsonify({
        "location": location.to_dict(),
        "groups": [
            {"date": day, "items": [m.to_dict() for m in rows]}
            for day, rows in groups.items()
        ],
        "count": len(movements),
    }), 200


@movements_bp.post("/confirm")
@require_auth
def confirm_route():
    """
    Confirm receipt of pending transfers.

    Body: {movement_ids: [...], destination: {type, id}}. The caller must
    own the destination; every movement must be addressed to it.
    """
    try:
        data = request.get_json(silent=True) or {}
        ids = data.get("movement_ids")
        if not isinstance(ids, list) or not ids:
            return jsonify({"error": "movement_ids must be a non-empty list"}), 400
        ids = [coerce_int(value, "movement_ids") for value in ids]

        destination = _location(data.get("destination"))
        if destination is None:
            if g.current_user.role != ROLE_ADMIN:
                return jsonify({"error": "destination required"}), 400
        elif not can_access_location(destination):
            return forbidden()

        movements = movement_service.confirm(ids, actor_user_id=g.current_user.id, destination=destination)
        return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200

    except (MovementError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to confirm movements")


@movements_bp.get("/my-sales")
@require_auth
@require_role(ROLE_PROMOTER)
def my_sales_route():
    movements = movement_service.sales_by_actor(g.current_user.id)
    return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200
