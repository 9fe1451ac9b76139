from __future__ import annotations

from ..extensions import db
from aurora.time_utils import to_utc_z, utcnow


PAYMENT_PIX = "PIX"
PAYMENT_CARD = "CARD"
PAYMENT_CASH = "CASH"
PAYMENT_INSTALLMENT = "INSTALLMENT"

VALID_PAYMENT_METHODS = (PAYMENT_PIX, PAYMENT_CARD, PAYMENT_CASH, PAYMENT_INSTALLMENT)

SALE_STATUS_PENDING = "PENDING"
SALE_STATUS_COMPLETED = "COMPLETED"
SALE_STATUS_CANCELLED = "CANCELLED"


class Sale(db.Model):
    """
    Sale recorded at a PDV.

    Amounts are snapshots taken at checkout (cents):
    total = max(0, subtotal - discount - credit_applied)
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_pdv_created", "pdv_id", "created_at"),
        db.Index("ix_sales_gateway_payment", "gateway", "gateway_payment_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pdv_id = db.Column(db.Integer, db.ForeignKey("pdvs.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    payment_method = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_PENDING, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_applied_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    gateway = db.Column(db.String(32), nullable=True)
    gateway_payment_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    pdv = db.relationship("PDV", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pdv_id": self.pdv_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "created_by_user_id": self.created_by_user_id,
            "payment_method": self.payment_method,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "credit_applied_cents": self.credit_applied_cents,
            "total_cents": self.total_cents,
            "gateway": self.gateway,
            "gateway_payment_id": self.gateway_payment_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }


class SaleItem(db.Model):
    """Line on a sale; unit price is frozen at the time of sale."""
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True, order_by="SaleItem.id"))
    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_sku": self.product.sku if self.product else None,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "movement_id": self.movement_id,
        }


INSTALLMENT_STATUS_OPEN = "OPEN"
INSTALLMENT_STATUS_PAID = "PAID"
INSTALLMENT_STATUS_CANCELLED = "CANCELLED"


class Installment(db.Model):
    """
    One payment of an INSTALLMENT sale's plan.

    Overdue is not stored: an OPEN installment is overdue once its due date
    has passed. gateway/gateway_payment_id are set when the installment is
    charged through Asaas and matched by its webhook.
    """
    __tablename__ = "installments"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "number", name="uq_installments_sale_number"),
        db.Index("ix_installments_status_due", "status", "due_date"),
        db.Index("ix_installments_gateway_payment", "gateway", "gateway_payment_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    number = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=INSTALLMENT_STATUS_OPEN)

    gateway = db.Column(db.String(32), nullable=True)
    gateway_payment_id = db.Column(db.String(64), nullable=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", backref=db.backref("installments", lazy=True, order_by="Installment.number"))

    def is_overdue(self, today=None) -> bool:
        today = today or utcnow().date()
        return self.status == INSTALLMENT_STATUS_OPEN and self.due_date < today

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "number": self.number,
            "amount_cents": self.amount_cents,
            "due_date": self.due_date.isoformat(),
            "status": self.status,
            "overdue": self.is_overdue(),
            "gateway": self.gateway,
            "gateway_payment_id": self.gateway_payment_id,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "paid_by_user_id": self.paid_by_user_id,
        }
