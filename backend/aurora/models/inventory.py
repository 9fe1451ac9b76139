from __future__ import annotations

from ..extensions import db
from aurora.time_utils import to_utc_z, utcnow


# Location tags
LOCATION_CENTRAL = "CENTRAL"
LOCATION_PROMOTER = "PROMOTER"
LOCATION_PDV = "PDV"
LOCATION_SALE = "SALE"

STOCK_LOCATION_TYPES = (LOCATION_CENTRAL, LOCATION_PROMOTER, LOCATION_PDV)

# Movement kinds
KIND_TRANSFER = "TRANSFER"
KIND_ADJUSTMENT = "ADJUSTMENT"
KIND_SALE = "SALE"
KIND_RETURN = "RETURN"

VALID_KINDS = (KIND_TRANSFER, KIND_ADJUSTMENT, KIND_SALE, KIND_RETURN)

# Movement states
STATE_PENDING = "PENDING"
STATE_APPLIED = "APPLIED"


class StockMovement(db.Model):
    """
    One row of the stock ledger.

    Rows are inserted once and updated at most once (PENDING -> APPLIED).
    They are never deleted.

    Balances are derived, never stored:
    - outbound quantity leaves the origin the moment the row exists
    - inbound quantity reaches the destination only while state is APPLIED

    A missing origin or destination means "outside the network" (supplier
    intake, write-off, customer return). CENTRAL locations carry no id.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_moves_origin", "origin_type", "origin_id", "product_id"),
        db.Index("ix_moves_destination", "destination_type", "destination_id", "product_id", "state"),
        db.CheckConstraint("quantity > 0", name="ck_moves_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    origin_type = db.Column(db.String(16), nullable=True)
    origin_id = db.Column(db.Integer, nullable=True)
    destination_type = db.Column(db.String(16), nullable=True)
    destination_id = db.Column(db.Integer, nullable=True)

    kind = db.Column(db.String(16), nullable=False, index=True)
    state = db.Column(db.String(16), nullable=False, default=STATE_APPLIED, index=True)
    note = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    product = db.relationship("Product")
    actor = db.relationship("User", foreign_keys=[actor_user_id])

    @property
    def is_pending(self) -> bool:
        return self.state == STATE_PENDING

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} kind={self.kind} product_id={self.product_id} "
            f"qty={self.quantity} state={self.state}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_sku": self.product.sku if self.product else None,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "origin_type": self.origin_type,
            "origin_id": self.origin_id,
            "destination_type": self.destination_type,
            "destination_id": self.destination_id,
            "kind": self.kind,
            "state": self.state,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "actor_name": self.actor.name if self.actor else None,
            "created_at": to_utc_z(self.created_at),
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "confirmed_by_user_id": self.confirmed_by_user_id,
        }
