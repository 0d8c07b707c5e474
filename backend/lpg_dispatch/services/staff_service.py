# Overview: Staff administration; profile updates, account activation and password resets.

"""
Staff administration inside one tenant.

Only admins and managers manage accounts. Deactivating a user, resetting a
password or changing a role revokes every session of that user, so the
change takes effect on the next request rather than at token expiry.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import User
from ..models.auth import ADMIN_ROLES, VALID_ROLES
from . import auth_service, session_service
from .auth_service import PasswordValidationError
from .concurrency import run_committed
from .results import ActionResult, ServiceError, NOT_FOUND, VALIDATION, RECORD_UPDATE_FAILURE
from .tenant_service import ActorContext, require_actor, scoped


class StaffError(ServiceError):
    """Raised for invalid account changes."""

    code = VALIDATION


def _account(actor: ActorContext, user_id) -> User:
    user = None
    if user_id:
        user = scoped(User, actor).filter(User.id == user_id).first()
    if user is None:
        raise StaffError("User not found or access denied", code=NOT_FOUND)
    return user


def _store_failure(action: str, user_id, exc: SQLAlchemyError) -> ActionResult:
    db.session.rollback()
    current_app.logger.error("Failed to %s user %s: %s", action, user_id, exc)
    return ActionResult.fail(f"Update Failed: {exc}", RECORD_UPDATE_FAILURE)


def list_users(actor: ActorContext | None, role: str | None = None) -> list[dict]:
    """Accounts of the tenant (optionally one role), newest first."""
    actor = require_actor(actor, roles=ADMIN_ROLES)
    if role is not None and role not in VALID_ROLES:
        raise StaffError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")

    query = scoped(User, actor)
    if role is not None:
        query = query.filter(User.role == role)
    return [user.to_dict() for user in query.order_by(User.created_at.desc(), User.id.desc())]


def update_user(
    actor: ActorContext | None,
    user_id: int | None,
    *,
    name: str | None = None,
    role: str | None = None,
    phone_number: str | None = None,
    vehicle_number: str | None = None,
) -> ActionResult:
    """Change name, role, phone or vehicle of an account in the caller's tenant."""
    try:
        actor = require_actor(actor, roles=ADMIN_ROLES)
        if role is not None and user_id == actor.actor_id:
            raise StaffError("You cannot change your own role")

        def _op():
            user = _account(actor, user_id)
            try:
                role_changed = auth_service.update_user_profile(
                    user,
                    name=name,
                    role=role,
                    phone_number=phone_number,
                    vehicle_number=vehicle_number,
                )
            except ValueError as exc:
                raise StaffError(str(exc)) from exc
            revoked = 0
            if role_changed:
                revoked = session_service.revoke_all_user_sessions(user.id, reason="Role changed by admin")
            return user.to_dict(), revoked

        user_dict, revoked = run_committed(_op)
        current_app.logger.info("User %s updated by %s", user_dict["id"], actor.actor_id)
        return ActionResult.ok("User updated successfully", user=user_dict, sessions_revoked=revoked)

    except ServiceError as exc:
        db.session.rollback()
        return ActionResult.from_error(exc)
    except SQLAlchemyError as exc:
        return _store_failure("update", user_id, exc)


def set_user_active(actor: ActorContext | None, user_id: int | None, active: bool) -> ActionResult:
    """
    Activate or deactivate an account.

    Deactivation revokes every session of the user; authentication already
    refuses inactive users.
    """
    action = "activate" if active else "deactivate"
    try:
        actor = require_actor(actor, roles=ADMIN_ROLES)
        if not active and user_id == actor.actor_id:
            raise StaffError("Cannot deactivate your own account")

        def _op():
            user = _account(actor, user_id)
            if user.is_active == active:
                raise StaffError(f"User is already {'active' if active else 'deactivated'}")
            user.is_active = active
            revoked = 0
            if not active:
                revoked = session_service.revoke_all_user_sessions(user.id, reason="Account deactivated by admin")
            return user.username, revoked

        username, revoked = run_committed(_op)
        current_app.logger.info("User %s %sd by %s", username, action, actor.actor_id)
        return ActionResult.ok(f"User {action}d successfully", user_id=user_id, sessions_revoked=revoked)

    except ServiceError as exc:
        db.session.rollback()
        return ActionResult.from_error(exc)
    except SQLAlchemyError as exc:
        return _store_failure(action, user_id, exc)


def reset_password(actor: ActorContext | None, user_id: int | None, new_password: str | None) -> ActionResult:
    """Set a new password for an account and log it out everywhere."""
    try:
        actor = require_actor(actor, roles=ADMIN_ROLES)
        if not new_password:
            raise StaffError("Password required")
        rounds = current_app.config.get("BCRYPT_ROUNDS", 12)

        def _op():
            user = _account(actor, user_id)
            try:
                auth_service.set_user_password(user, new_password, rounds=rounds)
            except PasswordValidationError as exc:
                raise StaffError(str(exc)) from exc
            return session_service.revoke_all_user_sessions(user.id, reason="Password reset by admin")

        revoked = run_committed(_op)
        current_app.logger.info("Password of user %s reset by %s", user_id, actor.actor_id)
        return ActionResult.ok("Password reset successfully", user_id=user_id, sessions_revoked=revoked)

    except ServiceError as exc:
        db.session.rollback()
        return ActionResult.from_error(exc)
    except SQLAlchemyError as exc:
        return _store_failure("reset password of", user_id, exc)
