# backend/aurora/services/product_service.py
"""
Catalog service.

Products are soft-deleted: movements and sale items keep referencing the
row, so delete_product only flips is_active.
"""
from __future__ import annotations

from ..extensions import db
from ..models import Product
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    enforce_rules_product,
    validate_payload,
)
from .concurrency import run_with_retry


class ProductError(Exception):
    """Raised for product operation errors."""
    pass


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "category", "material", "collection", "image_url",
        "cost_cents", "price_cents", "is_active",
    },
    required_on_create={"sku", "name", "price_cents"},
)


def list_products(include_inactive: bool = False, category: str | None = None) -> list[Product]:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    if category:
        query = query.filter_by(category=category)
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: int) -> Product | None:
    return db.session.query(Product).filter_by(id=product_id).first()


def create_product(payload: dict) -> Product:
    """
    Create a catalog item.

    Raises:
        ValidationError: On malformed input
        ConflictError: If the SKU already exists
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    def _op():
        if db.session.query(Product).filter_by(sku=patch["sku"]).first():
            raise ConflictError(f"SKU {patch['sku']} already exists.")
        product = Product(**patch)
        db.session.add(product)
        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(product_id: int, payload: dict) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    def _op():
        product = db.session.query(Product).filter_by(id=product_id).first()
        if not product:
            raise ProductError(f"Product {product_id} not found")
        if "sku" in patch and patch["sku"] != product.sku:
            raise ConflictError("SKU cannot be changed once created.")
        for key, value in patch.items():
            setattr(product, key, value)
        db.session.commit()
        return product

    return run_with_retry(_op)


def delete_product(product_id: int) -> Product:
    """Deactivate a product (idempotent)."""
    def _op():
        product = db.session.query(Product).filter_by(id=product_id).first()
        if not product:
            raise ProductError(f"Product {product_id} not found")
        if product.is_active:
            product.is_active = False
            db.session.commit()
        return product

    return run_with_retry(_op)
