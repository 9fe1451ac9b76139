# Overview: Service-layer operations for inventory; derives on-hand balances from the stock ledger.

# backend/aurora/services/inventory_service.py

from __future__ import annotations

from collections import defaultdict

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import (
    LOCATION_CENTRAL,
    LOCATION_PROMOTER,
    LOCATION_PDV,
    STATE_APPLIED,
)
from .locations import Location, matches
"""
Aurora Inventory Invariants (authoritative)

Inventory model:
- Inventory is ledger-derived from StockMovement rows; never stored as a mutable quantity field.
- On-hand at location L = SUM(qty of APPLIED rows with destination L)
                          - SUM(qty of ALL rows with origin L).
- A PENDING transfer is therefore already out of the sender but not yet in the receiver.
- Products with no movements have a balance of 0 everywhere.

Status flags:
- LOW_STOCK below a fixed per-location-type threshold (PDV < 3, PROMOTER < 5).
- CENTRAL has no threshold.

No caching: every call re-reads the ledger.
"""


STATUS_IN_STOCK = "IN_STOCK"
STATUS_LOW_STOCK = "LOW_STOCK"

LOW_STOCK_THRESHOLDS = {
    LOCATION_PDV: 3,
    LOCATION_PROMOTER: 5,
}


class InventoryError(Exception):
    """Raised when inventory operations fail."""
    pass


def stock_status(location_type: str, quantity: int) -> str:
    threshold = LOW_STOCK_THRESHOLDS.get(location_type)
    if threshold is not None and quantity < threshold:
        return STATUS_LOW_STOCK
    return STATUS_IN_STOCK


def get_quantity_on_hand(location: Location, product_id: int) -> int:
    """
    Derived balance of one product at one location.

    CRITICAL: inbound rows count only once APPLIED; outbound rows count from creation.
    """
    inbound = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity), 0)
    ).filter(
        StockMovement.product_id == product_id,
        StockMovement.state == STATE_APPLIED,
        matches(StockMovement.destination_type, StockMovement.destination_id, location),
    ).scalar()

    outbound = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity), 0)
    ).filter(
        StockMovement.product_id == product_id,
        matches(StockMovement.origin_type, StockMovement.origin_id, location),
    ).scalar()

    return int(inbound or 0) - int(outbound or 0)


def _balances_by_location(product_ids: list[int] | None = None) -> dict:
    """
    Balances for every (product, location) pair touched by the ledger.

    Returns {product_id: {(location_type, location_id): quantity}}.
    """
    balances: dict = defaultdict(lambda: defaultdict(int))

    inbound = db.session.query(
        StockMovement.product_id,
        StockMovement.destination_type,
        StockMovement.destination_id,
        func.sum(StockMovement.quantity),
    ).filter(
        StockMovement.state == STATE_APPLIED,
        StockMovement.destination_type.in_([LOCATION_CENTRAL, LOCATION_PROMOTER, LOCATION_PDV]),
    )
    outbound = db.session.query(
        StockMovement.product_id,
        StockMovement.origin_type,
        StockMovement.origin_id,
        func.sum(StockMovement.quantity),
    ).filter(
        StockMovement.origin_type.in_([LOCATION_CENTRAL, LOCATION_PROMOTER, LOCATION_PDV]),
    )
    if product_ids is not None:
        inbound = inbound.filter(StockMovement.product_id.in_(product_ids))
        outbound = outbound.filter(StockMovement.product_id.in_(product_ids))

    inbound = inbound.group_by(
        StockMovement.product_id, StockMovement.destination_type, StockMovement.destination_id
    )
    outbound = outbound.group_by(
        StockMovement.product_id, StockMovement.origin_type, StockMovement.origin_id
    )

    for product_id, loc_type, loc_id, qty in inbound.all():
        balances[product_id][(loc_type, loc_id)] += int(qty or 0)
    for product_id, loc_type, loc_id, qty in outbound.all():
        balances[product_id][(loc_type, loc_id)] -= int(qty or 0)

    return balances


def levels_for_central() -> list[dict]:
    """
    Network-wide stock levels, one row per active product.

    qty_central is the warehouse balance; qty_in_field sums every PROMOTER
    and PDV balance (goods in transit to them are not counted anywhere).
    """
    products = db.session.query(Product).filter_by(is_active=True).order_by(Product.name).all()
    balances = _balances_by_location([p.id for p in products]) if products else {}

    levels = []
    for product in products:
        per_location = balances.get(product.id, {})
        central = per_location.get((LOCATION_CENTRAL, None), 0)
        in_field = sum(
            qty for (loc_type, _), qty in per_location.items()
            if loc_type in (LOCATION_PROMOTER, LOCATION_PDV)
        )
        levels.append({
            "product_id": product.id,
            "sku": product.sku,
            "name": product.name,
            "category": product.category,
            "qty_central": central,
            "qty_in_field": in_field,
            "cost_cents": product.cost_cents,
            "price_cents": product.price_cents,
        })
    return levels


def items_for(location: Location) -> list[dict]:
    """
    Per-product on-hand quantity at one location with a LOW_STOCK flag.

    Lists every product that has ever moved through the location, so items
    sold out still show with quantity 0.
    """
    if not location.holds_stock:
        raise InventoryError(f"{location.type} does not hold stock")

    product_ids = [
        row[0] for row in db.session.query(StockMovement.product_id).filter(
            or_(
                matches(StockMovement.destination_type, StockMovement.destination_id, location),
                matches(StockMovement.origin_type, StockMovement.origin_id, location),
            )
        ).distinct().all()
    ]
    if not product_ids:
        return []

    products = db.session.query(Product).filter(Product.id.in_(product_ids)).order_by(Product.name).all()

    items = []
    for product in products:
        qty = get_quantity_on_hand(location, product.id)
        items.append({
            "product_id": product.id,
            "sku": product.sku,
            "name": product.name,
            "category": product.category,
            "image_url": product.image_url,
            "price_cents": product.price_cents,
            "quantity": qty,
            "status": stock_status(location.type, qty),
        })
    return items


def audit_location(location: Location, counted: dict[int, int], actor_user_id: int | None) -> list[StockMovement]:
    """
    Reconcile a physical count against the ledger.

    counted maps product_id -> physically counted quantity. Each difference
    becomes one ADJUSTMENT (intake for surplus, write-off for shortage); all
    of them commit together.
    """
    from .movement_service import record_batch
    from ..models.inventory import KIND_ADJUSTMENT

    if not location.holds_stock:
        raise InventoryError(f"{location.type} does not hold stock")

    entries = []
    for product_id, counted_qty in counted.items():
        if isinstance(counted_qty, bool) or not isinstance(counted_qty, int) or counted_qty < 0:
            raise InventoryError(f"Invalid counted quantity for product {product_id}")
        diff = counted_qty - get_quantity_on_hand(location, product_id)
        if diff == 0:
            continue
        entries.append({
            "product_id": product_id,
            "quantity": abs(diff),
            "origin": None if diff > 0 else location,
            "destination": location if diff > 0 else None,
            "kind": KIND_ADJUSTMENT,
            "note": f"Audit at {location}",
        })

    if not entries:
        return []
    return record_batch(entries, actor_user_id=actor_user_id)
