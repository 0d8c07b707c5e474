# Overview: Service-layer operations for auth; bcrypt passwords and tenant-scoped users.

"""
Authentication Service with Multi-Tenant Support

WHY: Every ledger entry and every cylinder move is attributed to a user.
Uses bcrypt for password hashing.

MULTI-TENANT: Users belong to exactly one tenant. Username uniqueness is
tenant-scoped, so login always names the tenant (by code).

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

import bcrypt

from ..extensions import db
from ..models import User, Tenant
from ..models.auth import VALID_ROLES
from ..time_utils import utcnow


MIN_PASSWORD_LENGTH = 8


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def hash_password(password: str, *, rounds: int = 12) -> str:
    """
    Hash password using bcrypt (default cost factor 12).

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    tenant_id: int,
    username: str,
    name: str,
    password: str,
    role: str,
    phone_number: str | None = None,
    vehicle_number: str | None = None,
    *,
    rounds: int = 12,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises:
        ValueError: tenant missing/inactive, unknown role, or username taken in the tenant
        PasswordValidationError: password too weak
    """
    tenant = db.session.query(Tenant).filter_by(id=tenant_id).first()
    if not tenant:
        raise ValueError("Tenant not found")
    if not tenant.is_active:
        raise ValueError("Tenant is not active")

    if role not in VALID_ROLES:
        raise ValueError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")

    existing = db.session.query(User).filter_by(tenant_id=tenant_id, username=username).first()
    if existing:
        raise ValueError("Username already exists in this tenant")

    user = User(
        tenant_id=tenant_id,
        username=username,
        name=name,
        role=role,
        password_hash=hash_password(password, rounds=rounds),
        phone_number=phone_number,
        vehicle_number=vehicle_number,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(tenant_code: str, username: str, password: str) -> User | None:
    """
    Authenticate user with username and password inside a tenant.

    Returns User if credentials are valid and both user and tenant are
    active, None otherwise. Updates last_login_at on success.
    """
    tenant = db.session.query(Tenant).filter_by(code=tenant_code).first()
    if not tenant or not tenant.is_active:
        return None

    user = db.session.query(User).filter(
        User.tenant_id == tenant.id,
        User.username == username,
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def update_user_profile(
    user: User,
    *,
    name: str | None = None,
    role: str | None = None,
    phone_number: str | None = None,
    vehicle_number: str | None = None,
) -> bool:
    """
    Stage profile changes on a user. Fields left as None are unchanged.

    Returns True when the role changed (callers revoke the user's sessions,
    which carry the role captured at login). The caller commits.

    Raises:
        ValueError: blank name or unknown role
    """
    if name is not None:
        name = name.strip()
        if not name:
            raise ValueError("Name is required")
        user.name = name

    role_changed = False
    if role is not None:
        if role not in VALID_ROLES:
            raise ValueError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")
        role_changed = role != user.role
        user.role = role

    if phone_number is not None:
        user.phone_number = phone_number.strip() or None
    if vehicle_number is not None:
        user.vehicle_number = vehicle_number.strip() or None

    db.session.flush()
    return role_changed


def set_user_password(user: User, new_password: str, *, rounds: int = 12) -> None:
    """Stage a new bcrypt hash for the user (strength validated). The caller commits."""
    user.password_hash = hash_password(new_password, rounds=rounds)
    db.session.flush()
