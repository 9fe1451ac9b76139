from __future__ import annotations

from ..extensions import db
from aurora.time_utils import to_utc_z, utcnow


class PDV(db.Model):
    """
    Point-of-sale partner location.

    promoter_id is the promoter whose portfolio this PDV belongs to (drives
    commission and turnover). partner_id is the user who operates the counter.
    """
    __tablename__ = "pdvs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    trade_name = db.Column(db.String(255), nullable=False)
    person_type = db.Column(db.String(16), nullable=True)  # FISICA, JURIDICA
    document = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    state = db.Column(db.String(2), nullable=True)

    promoter_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    partner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    promoter = db.relationship("User", foreign_keys=[promoter_id])
    partner = db.relationship("User", foreign_keys=[partner_id])

    def __repr__(self) -> str:
        return f"<PDV id={self.id} trade_name={self.trade_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trade_name": self.trade_name,
            "person_type": self.person_type,
            "document": self.document,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "promoter_id": self.promoter_id,
            "promoter_name": self.promoter.name if self.promoter else None,
            "partner_id": self.partner_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
