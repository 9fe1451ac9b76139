# backend/aurora/services/movement_service.py
"""
Stock ledger service.

WHY: Every unit of stock moving between the warehouse, a promoter's
briefcase, a PDV or a customer is one immutable StockMovement row.
Balances are read back from these rows by inventory_service.

TWO-PHASE TRANSFERS:
1. TRANSFER to a PROMOTER or PDV is created PENDING. The sender is debited
   immediately (the stock cannot be allocated twice) but the receiver is not
   credited yet.
2. The receiver confirms after counting the goods: the row becomes APPLIED
   and the receiver's balance includes it.

Every other movement (ADJUSTMENT, SALE, RETURN, TRANSFER back to CENTRAL) is
APPLIED at creation because nobody else has to verify receipt.
"""
from __future__ import annotations

from collections import OrderedDict

from ..extensions import db
from ..models import StockMovement, Product, User, PDV
from ..models.inventory import (
    LOCATION_PROMOTER,
    LOCATION_PDV,
    LOCATION_SALE,
    KIND_TRANSFER,
    KIND_ADJUSTMENT,
    KIND_SALE,
    KIND_RETURN,
    VALID_KINDS,
    STATE_PENDING,
    STATE_APPLIED,
)
from ..models.users import ROLE_PROMOTER
from aurora.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import get_quantity_on_hand
from .locations import Location, location_of, matches


class MovementError(Exception):
    """Raised when a ledger operation is rejected."""
    pass


def initial_state(kind: str, destination: Location | None) -> str:
    """PENDING only for transfers that a promoter or PDV has to confirm."""
    if kind == KIND_TRANSFER and destination is not None and destination.type in (LOCATION_PROMOTER, LOCATION_PDV):
        return STATE_PENDING
    return STATE_APPLIED


def _validate_shape(kind: str, origin: Location | None, destination: Location | None) -> None:
    if kind not in VALID_KINDS:
        raise MovementError(f"Invalid movement kind: {kind}. Must be one of {list(VALID_KINDS)}")

    if kind == KIND_TRANSFER:
        if origin is None or destination is None or not origin.holds_stock or not destination.holds_stock:
            raise MovementError("TRANSFER requires stock locations on both ends")
        if origin == destination:
            raise MovementError("Cannot transfer to the same location")

    elif kind == KIND_ADJUSTMENT:
        ends = [loc for loc in (origin, destination) if loc is not None]
        if len(ends) != 1 or not ends[0].holds_stock:
            raise MovementError("ADJUSTMENT requires exactly one stock location")

    elif kind == KIND_SALE:
        if origin is None or origin.type not in (LOCATION_PDV, LOCATION_PROMOTER):
            raise MovementError("SALE must leave a PDV or a promoter")
        if destination is None or destination.type != LOCATION_SALE:
            raise MovementError("SALE must be addressed to a sale")

    elif kind == KIND_RETURN:
        if destination is None or not destination.holds_stock:
            raise MovementError("RETURN must be addressed to a stock location")
        if origin is not None and not origin.holds_stock:
            raise MovementError("RETURN origin must be a stock location")


def _ensure_location_exists(location: Location | None) -> None:
    if location is None:
        return
    if location.type == LOCATION_PROMOTER:
        user = db.session.query(User).filter_by(id=location.id).first()
        if user is None or user.role != ROLE_PROMOTER:
            raise MovementError(f"Promoter {location.id} not found")
    elif location.type == LOCATION_PDV:
        pdv = db.session.query(PDV).filter_by(id=location.id).first()
        if pdv is None:
            raise MovementError(f"PDV {location.id} not found")
        if not pdv.is_active:
            raise MovementError(f"PDV {location.id} is inactive")


def _record_movement_inner(
    *,
    product_id: int,
    quantity: int,
    origin: Location | None,
    destination: Location | None,
    actor_user_id: int | None,
    kind: str,
    note: str | None = None,
) -> StockMovement:
    """Validate and insert one row without committing."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise MovementError("Quantity must be a positive integer")

    _validate_shape(kind, origin, destination)
    _ensure_location_exists(origin)
    _ensure_location_exists(destination)

    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise MovementError(f"Product {product_id} not found")

    # Stock may never go negative at the origin
    if origin is not None and origin.holds_stock:
        on_hand = get_quantity_on_hand(origin, product_id)
        if on_hand < quantity:
            raise MovementError(
                f"Insufficient stock for product {product.sku} at {origin}. "
                f"On-hand: {on_hand}, requested: {quantity}"
            )

    now = utcnow()
    state = initial_state(kind, destination)
    movement = StockMovement(
        product_id=product_id,
        quantity=quantity,
        origin_type=origin.type if origin else None,
        origin_id=origin.id if origin else None,
        destination_type=destination.type if destination else None,
        destination_id=destination.id if destination else None,
        kind=kind,
        state=state,
        note=note,
        actor_user_id=actor_user_id,
        created_at=now,
        confirmed_at=now if state == STATE_APPLIED else None,
        confirmed_by_user_id=actor_user_id if state == STATE_APPLIED else None,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def record_movement(
    *,
    product_id: int,
    quantity: int,
    origin: Location | None,
    destination: Location | None,
    actor_user_id: int | None,
    kind: str,
    note: str | None = None,
) -> StockMovement:
    """
    Append one movement to the ledger.

    Args:
        product_id: Product being moved
        quantity: Positive unit count
        origin: Where the stock leaves from (None = outside the network)
        destination: Where it goes (None = outside the network)
        actor_user_id: User recording the movement
        kind: TRANSFER, ADJUSTMENT, SALE or RETURN

    Returns:
        StockMovement: PENDING for promoter/PDV transfers, APPLIED otherwise

    Raises:
        MovementError: If the shape is invalid or the origin lacks stock
    """
    def _op():
        movement = _record_movement_inner(
            product_id=product_id,
            quantity=quantity,
            origin=origin,
            destination=destination,
            actor_user_id=actor_user_id,
            kind=kind,
            note=note,
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def record_batch(entries: list[dict], actor_user_id: int | None) -> list[StockMovement]:
    """
    Append several movements in a single transaction.

    Each entry holds product_id, quantity, origin, destination, kind and an
    optional note. Either every row is written or none is.
    """
    if not entries:
        raise MovementError("No movements to record")

    def _op():
        movements = [
            _record_movement_inner(
                product_id=entry["product_id"],
                quantity=entry["quantity"],
                origin=entry.get("origin"),
                destination=entry.get("destination"),
                actor_user_id=actor_user_id,
                kind=entry["kind"],
                note=entry.get("note"),
            )
            for entry in entries
        ]
        db.session.commit()
        return movements

    return run_with_retry(_op)


def confirm(
    movement_ids: list[int],
    actor_user_id: int | None,
    destination: Location | None = None,
) -> list[StockMovement]:
    """
    Apply pending transfers, crediting the receiver.

    Every id must exist and still be PENDING, otherwise nothing changes:
    a movement is confirmed exactly once. When destination is given, every
    row must be addressed to it (a promoter can only accept their own cargo).
    """
    ids = list(OrderedDict.fromkeys(movement_ids or []))
    if not ids:
        raise MovementError("No movements to confirm")

    def _op():
        rows = lock_for_update(
            db.session.query(StockMovement).filter(StockMovement.id.in_(ids))
        ).all()
        by_id = {row.id: row for row in rows}

        missing = [movement_id for movement_id in ids if movement_id not in by_id]
        if missing:
            raise MovementError(f"Movements not found: {missing}")

        not_pending = [row.id for row in rows if not row.is_pending]
        if not_pending:
            raise MovementError(f"Movements are not pending: {sorted(not_pending)}")

        if destination is not None:
            foreign = [
                row.id for row in rows
                if location_of(row.destination_type, row.destination_id) != destination
            ]
            if foreign:
                raise MovementError(f"Movements not addressed to {destination}: {sorted(foreign)}")

        now = utcnow()
        for row in rows:
            row.state = STATE_APPLIED
            row.confirmed_at = now
            row.confirmed_by_user_id = actor_user_id

        db.session.commit()
        return [by_id[movement_id] for movement_id in ids]

    return run_with_retry(_op)


def pending_for(location: Location) -> list[StockMovement]:
    """Unconfirmed transfers addressed to a location, newest first."""
    return db.session.query(StockMovement).filter(
        StockMovement.kind == KIND_TRANSFER,
        StockMovement.state == STATE_PENDING,
        matches(StockMovement.destination_type, StockMovement.destination_id, location),
    ).order_by(
        StockMovement.created_at.desc(),
        StockMovement.id.desc(),
    ).all()


def group_by_day(movements: list[StockMovement]) -> "OrderedDict[str, list[StockMovement]]":
    """Group movements by creation date (YYYY-MM-DD), keeping input order."""
    groups: OrderedDict = OrderedDict()
    for movement in movements:
        key = movement.created_at.date().isoformat()
        groups.setdefault(key, []).append(movement)
    return groups


def list_movements(limit: int = 200) -> list[StockMovement]:
    return db.session.query(StockMovement).order_by(
        StockMovement.created_at.desc(),
        StockMovement.id.desc(),
    ).limit(limit).all()


def sales_by_actor(user_id: int) -> list[StockMovement]:
    """SALE movements recorded by one user (a promoter selling from the briefcase)."""
    return db.session.query(StockMovement).filter_by(
        actor_user_id=user_id,
        kind=KIND_SALE,
    ).order_by(
        StockMovement.created_at.desc(),
        StockMovement.id.desc(),
    ).all()


def add_stock_to_central(product_id: int, quantity: int, actor_user_id: int | None) -> StockMovement:
    """Supplier intake into the warehouse (applied immediately)."""
    return record_movement(
        product_id=product_id,
        quantity=quantity,
        origin=None,
        destination=Location.central(),
        actor_user_id=actor_user_id,
        kind=KIND_ADJUSTMENT,
        note="Central intake",
    )


def transfer_to_promoter(
    product_id: int,
    promoter_id: int,
    quantity: int,
    actor_user_id: int | None,
) -> StockMovement:
    """Ship warehouse stock to a promoter; it waits for the promoter's confirmation."""
    return record_movement(
        product_id=product_id,
        quantity=quantity,
        origin=Location.central(),
        destination=Location.promoter(promoter_id),
        actor_user_id=actor_user_id,
        kind=KIND_TRANSFER,
    )
