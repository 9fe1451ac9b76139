from __future__ import annotations

from ..extensions import db
from aurora.time_utils import to_utc_z, utcnow


COMMISSION_STATUS_PENDING = "PENDING"
COMMISSION_STATUS_PAID = "PAID"


class CommissionPayment(db.Model):
    """
    Payment authorization for one promoter's monthly commission.

    Commission figures themselves are computed on demand; only the fact that
    a month was paid (and how much) is persisted.
    """
    __tablename__ = "commission_payments"
    __table_args__ = (
        db.UniqueConstraint("promoter_id", "month", "year", name="uq_commission_payments_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    promoter_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=COMMISSION_STATUS_PAID)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    authorized_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "promoter_id": self.promoter_id,
            "month": self.month,
            "year": self.year,
            "status": self.status,
            "paid_amount_cents": self.paid_amount_cents,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "authorized_by_user_id": self.authorized_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
