"""
Multi-Tenant Service: actor context and tenant scoping helpers.

WHY: Every core operation runs on behalf of a resolved (actor, tenant)
pair. The pair comes from the session, never from request input, so no
operation accepts a caller-supplied tenant id.

SECURITY INVARIANTS:
1. Operations fail closed ("unauthorized") when the actor context is missing
2. Every query on tenant-owned rows filters by actor.tenant_id
3. Rows that exist in another tenant are reported exactly like missing rows

USAGE:
    from lpg_dispatch.services.tenant_service import require_actor

    actor = require_actor(actor)              # raises TenantAccessError
    order = scoped(Order, actor).filter_by(id=order_id).first()
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import User
from ..models.auth import STAFF_ROLES, ROLE_DRIVER
from .results import ServiceError, UNAUTHORIZED, NOT_FOUND


class TenantAccessError(ServiceError):
    """Raised when no tenant context is established or the role is wrong."""

    code = UNAUTHORIZED


@dataclass(frozen=True)
class ActorContext:
    """The authenticated caller, as resolved by the session provider."""

    actor_id: int
    tenant_id: int
    role: str

    @property
    def is_driver(self) -> bool:
        return self.role == ROLE_DRIVER

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


def require_actor(actor: ActorContext | None, *, roles: tuple[str, ...] | None = None) -> ActorContext:
    """
    Fail closed unless a complete actor context is present.

    Args:
        actor: Resolved context (None when the session provider had nothing)
        roles: Optional allowlist of roles for the operation

    Raises:
        TenantAccessError: missing actor/tenant or role not allowed
    """
    if actor is None or not actor.actor_id or not actor.tenant_id:
        raise TenantAccessError("Unauthorized")
    if roles is not None and actor.role not in roles:
        raise TenantAccessError("Unauthorized")
    return actor


def scoped(model, actor: ActorContext):
    """Query on a tenant-owned model restricted to the actor's tenant."""
    return db.session.query(model).filter(model.tenant_id == actor.tenant_id)


def get_tenant_user(actor: ActorContext, user_id: int | None, *, roles: tuple[str, ...] | None = None) -> User:
    """
    Load an active user of the actor's tenant, optionally restricted by role.

    Raises ServiceError(not_found) for missing, inactive, foreign-tenant or
    wrong-role users alike.
    """
    user = None
    if user_id is not None:
        user = scoped(User, actor).filter(User.id == user_id, User.is_active.is_(True)).first()
    if user is None or (roles is not None and user.role not in roles):
        raise ServiceError("User not found or access denied", code=NOT_FOUND)
    return user
