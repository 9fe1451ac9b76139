from __future__ import annotations

from ..extensions import db
from aurora.time_utils import to_utc_z, utcnow


ROLE_ADMIN = "ADMIN"
ROLE_PROMOTER = "PROMOTER"
ROLE_PARTNER = "PARTNER"

VALID_ROLES = (ROLE_ADMIN, ROLE_PROMOTER, ROLE_PARTNER)


class User(db.Model):
    """
    Platform user.

    Promoters carry a level (JUNIOR, SENIOR, COORDINATOR) and may report to
    a superior. Only parent -> children links are meaningful: a coordinator
    earns overrides on direct reports, never on their reports.

    promoter_level is nullable; readers treat a missing level as JUNIOR.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_role_active", "role", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    whatsapp = db.Column(db.String(32), nullable=True)
    region = db.Column(db.String(64), nullable=True)

    role = db.Column(db.String(16), nullable=False, index=True)
    promoter_level = db.Column(db.String(16), nullable=True)
    superior_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    superior = db.relationship("User", remote_side=[id], backref=db.backref("direct_reports", lazy=True))

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "whatsapp": self.whatsapp,
            "region": self.region,
            "role": self.role,
            "promoter_level": self.promoter_level,
            "superior_id": self.superior_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """Bearer session; only the SHA-256 hash of the token is stored."""
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(64), nullable=True)

    user_agent = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    user = db.relationship("User")

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None
