from __future__ import annotations

from ..extensions import db
from aurora.time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Catalog item sold through the network.

    SKU is the canonical identity and never changes once created. Prices are
    mutable by catalog admins and stored in cents.

    Products are never hard-deleted: stock movements and sale items keep
    pointing at them, so "delete" flips is_active instead.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True, index=True)
    material = db.Column(db.String(64), nullable=True)
    collection = db.Column(db.String(64), nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    cost_cents = db.Column(db.Integer, nullable=False, default=0)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "material": self.material,
            "collection": self.collection,
            "image_url": self.image_url,
            "cost_cents": self.cost_cents,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
