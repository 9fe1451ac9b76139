# Overview: Flask API routes for the product catalog.

from flask import Blueprint, request, jsonify

from ..services import product_service
from ..services.product_service import ProductError
from ..validation import ValidationError, ConflictError
from ..decorators import require_auth, require_role
from ..models.users import ROLE_ADMIN
from . import internal_error, not_found


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    products = product_service.list_products(
        include_inactive=include_inactive,
        category=request.args.get("category"),
    )
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    product = product_service.get_product(product_id)
    if not product:
        return not_found("Product")
    return jsonify({"product": product.to_dict()}), 200


@products_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_product_route():
    try:
        product = product_service.create_product(request.get_json(silent=True))
        return jsonify({"product": product.to_dict()}), 201

    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to create product")


@products_bp.patch("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_product_route(product_id: int):
    try:
        product = product_service.update_product(product_id, request.get_json(silent=True))
        return jsonify({"product": product.to_dict()}), 200

    except ProductError:
        return not_found("Product")
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to update product")


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_product_route(product_id: int):
    """Soft delete: the product is deactivated, history keeps pointing at it."""
    try:
        product = product_service.delete_product(product_id)
        return jsonify({"product": product.to_dict()}), 200

    except ProductError:
        return not_found("Product")
    except Exception:
        return internal_error("Failed to delete product")
