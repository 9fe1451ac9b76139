# Overview: Service-layer operations for auth; password hashing and user accounts.

"""
Authentication Service

WHY: Every ledger row and sale records who did it. Passwords are hashed
with bcrypt and checked for strength before hashing.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, with upper and lower case letters and a digit
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt

from ..extensions import db
from ..models import User
from ..models.users import VALID_ROLES, ROLE_PROMOTER
from .commission_service import CommissionError, normalize_level
from .concurrency import run_with_retry


class AuthError(Exception):
    """Raised for account operation errors."""
    pass


class PasswordValidationError(AuthError):
    """Raised when password doesn't meet strength requirements."""
    pass


USER_UPDATABLE_FIELDS = {"name", "whatsapp", "region", "role", "promoter_level", "superior_id", "is_active"}


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash password using bcrypt; strength is validated first."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    Malformed hashes verify as False rather than raising.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def _check_hierarchy(role: str, promoter_level, superior_id, user_id: int | None = None):
    if role not in VALID_ROLES:
        raise AuthError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")

    if role != ROLE_PROMOTER:
        if promoter_level is not None or superior_id is not None:
            raise AuthError("Only promoters carry a level or a superior")
        return None

    try:
        level = normalize_level(promoter_level) if promoter_level is not None else None
    except CommissionError as e:
        raise AuthError(str(e))

    if superior_id is not None:
        if superior_id == user_id:
            raise AuthError("A promoter cannot report to themselves")
        superior = db.session.query(User).filter_by(id=superior_id).first()
        if not superior or superior.role != ROLE_PROMOTER:
            raise AuthError(f"Superior {superior_id} must be a promoter")
    return level


def create_user(
    name: str,
    email: str,
    password: str,
    role: str,
    promoter_level: str | None = None,
    superior_id: int | None = None,
    whatsapp: str | None = None,
    region: str | None = None,
    bcrypt_rounds: int = 12,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises:
        AuthError: If the email is taken, the role is unknown or the promoter hierarchy is invalid
        PasswordValidationError: If password doesn't meet requirements
    """
    email = (email or "").strip().lower()
    if not email or not (name or "").strip():
        raise AuthError("Name and email are required")

    role = (role or "").strip().upper()
    level = _check_hierarchy(role, promoter_level, superior_id)

    if db.session.query(User).filter_by(email=email).first():
        raise AuthError("Email already registered")

    user = User(
        name=name.strip(),
        email=email,
        password_hash=hash_password(password, rounds=bcrypt_rounds),
        role=role,
        promoter_level=level,
        superior_id=superior_id,
        whatsapp=whatsapp,
        region=region,
    )

    db.session.add(user)
    db.session.commit()
    return user


def update_user(user_id: int, updates: dict) -> User:
    unknown = set(updates) - USER_UPDATABLE_FIELDS
    if unknown:
        raise AuthError(f"Fields not allowed: {', '.join(sorted(unknown))}")

    def _op():
        user = db.session.query(User).filter_by(id=user_id).first()
        if not user:
            raise AuthError(f"User {user_id} not found")

        role = (updates.get("role") or user.role).strip().upper()
        level = _check_hierarchy(
            role,
            updates.get("promoter_level", user.promoter_level),
            updates.get("superior_id", user.superior_id),
            user_id=user.id,
        )

        for key, value in updates.items():
            setattr(user, key, value)
        user.role = role
        user.promoter_level = level

        db.session.commit()
        return user

    return run_with_retry(_op)


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate by email and password.

    Returns the User if credentials are valid and the account is active,
    None otherwise.
    """
    user = db.session.query(User).filter(
        User.email == (email or "").strip().lower(),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        return user

    return None


def list_users(role: str | None = None) -> list[User]:
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role.upper())
    return query.order_by(User.name.asc(), User.id.asc()).all()
