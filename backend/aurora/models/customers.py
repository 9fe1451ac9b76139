from __future__ import annotations

from ..extensions import db
from aurora.time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """
    End customer of a PDV.

    CPF is the natural dedup key; whatsapp is the first lookup key at the
    counter. Both are stored as digits only. asaas_id caches the customer
    record created on the Asaas gateway.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    whatsapp = db.Column(db.String(32), nullable=True, index=True)
    cpf = db.Column(db.String(11), nullable=True, unique=True, index=True)
    email = db.Column(db.String(255), nullable=True)
    birth_date = db.Column(db.Date, nullable=True)

    postal_code = db.Column(db.String(16), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    number = db.Column(db.String(16), nullable=True)
    complement = db.Column(db.String(64), nullable=True)
    district = db.Column(db.String(128), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    state = db.Column(db.String(2), nullable=True)

    origin_pdv_id = db.Column(db.Integer, db.ForeignKey("pdvs.id"), nullable=True, index=True)
    asaas_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    origin_pdv = db.relationship("PDV")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "whatsapp": self.whatsapp,
            "cpf": self.cpf,
            "email": self.email,
            "birth_date": self.birth_date.isoformat() if self.birth_date else None,
            "postal_code": self.postal_code,
            "address": self.address,
            "number": self.number,
            "complement": self.complement,
            "district": self.district,
            "city": self.city,
            "state": self.state,
            "origin_pdv_id": self.origin_pdv_id,
            "origin_pdv_name": self.origin_pdv.trade_name if self.origin_pdv else None,
            "asaas_id": self.asaas_id,
            "created_at": to_utc_z(self.created_at),
        }


class CustomerReturn(db.Model):
    """Customer return at a PDV, granting store credit and restocking the item."""
    __tablename__ = "customer_returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    pdv_id = db.Column(db.Integer, db.ForeignKey("pdvs.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    credit_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="COMPLETED")
    notes = db.Column(db.Text, nullable=True)

    movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    customer = db.relationship("Customer")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pdv_id": self.pdv_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "reason": self.reason,
            "credit_cents": self.credit_cents,
            "status": self.status,
            "notes": self.notes,
            "movement_id": self.movement_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
