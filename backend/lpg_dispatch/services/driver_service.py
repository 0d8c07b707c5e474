# Overview: Read-only views for the driver app (truck stock, route, cash in hand).

"""
Driver views.

Everything here is scoped to the calling driver in the calling tenant and
never writes. Routes use these to render the driver's route, truck and
wallet.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..models import Cylinder, Order, User, Customer
from ..models.auth import STAFF_ROLES
from ..models.cylinders import CYLINDER_FULL, CYLINDER_EMPTY, LOCATION_DRIVER
from ..models.orders import ORDER_DELIVERED, ACTIVE_ORDER_STATUSES
from ..time_utils import day_bounds, utcnow
from .ledger_service import get_wallet_balance
from .tenant_service import ActorContext, require_actor, scoped


def _truck(actor: ActorContext):
    return scoped(Cylinder, actor).filter(
        Cylinder.current_holder_id == actor.actor_id,
        Cylinder.current_location_type == LOCATION_DRIVER,
    )


def get_driver_inventory(actor: ActorContext | None) -> dict:
    """Full cylinders currently on the driver's truck."""
    actor = require_actor(actor)
    cylinders = _truck(actor).filter(Cylinder.status == CYLINDER_FULL).order_by(Cylinder.serial_number).all()
    return {
        "count": len(cylinders),
        "cylinders": [cylinder.to_dict() for cylinder in cylinders],
    }


def get_driver_assets(actor: ActorContext | None) -> list[dict]:
    """Everything on the truck (full, empty and held), full first."""
    actor = require_actor(actor)
    cylinders = _truck(actor).order_by(Cylinder.status.desc(), Cylinder.serial_number).all()
    return [cylinder.to_dict() for cylinder in cylinders]


def get_driver_orders(actor: ActorContext | None) -> list[dict]:
    """Active route: assigned and on-trip orders, oldest first, with customer details."""
    actor = require_actor(actor)
    orders = (
        scoped(Order, actor)
        .filter(Order.driver_id == actor.actor_id, Order.status.in_(ACTIVE_ORDER_STATUSES))
        .order_by(Order.created_at, Order.id)
        .all()
    )
    rows = []
    for order in orders:
        row = order.to_dict()
        customer: Customer = order.customer
        row["customer"] = {
            "id": customer.id,
            "name": customer.name,
            "phone": customer.phone,
            "address": customer.address,
            "current_balance_cents": customer.current_balance_cents,
        }
        rows.append(row)
    return rows


def get_completed_orders(actor: ActorContext | None, day: datetime | None = None) -> list[dict]:
    """Orders this driver delivered on ``day`` (defaults to today, UTC), newest first."""
    actor = require_actor(actor)
    start, end = day_bounds(day or utcnow())
    orders = (
        scoped(Order, actor)
        .filter(
            Order.driver_id == actor.actor_id,
            Order.status == ORDER_DELIVERED,
            Order.trip_completed_at >= start,
            Order.trip_completed_at < end,
        )
        .order_by(Order.trip_completed_at.desc())
        .all()
    )
    return [order.to_dict() for order in orders]


def get_driver_stats(actor: ActorContext | None) -> dict:
    """Cash liability and empties on hand."""
    actor = require_actor(actor)
    empty_count = _truck(actor).filter(Cylinder.status == CYLINDER_EMPTY).with_entities(func.count(Cylinder.id)).scalar()
    return {
        "cash_on_hand_cents": get_wallet_balance(actor.tenant_id, actor.actor_id),
        "empty_cylinders": empty_count or 0,
    }


def get_receivers(actor: ActorContext | None) -> list[dict]:
    """Active staff who can receive a handover, one entry per user, sorted by name."""
    actor = require_actor(actor)
    users = (
        scoped(User, actor)
        .filter(User.role.in_(STAFF_ROLES), User.is_active.is_(True))
        .order_by(User.name, User.id)
        .all()
    )
    seen: set[int] = set()
    receivers = []
    for user in users:
        if user.id in seen:
            continue
        seen.add(user.id)
        receivers.append({"id": user.id, "name": user.name, "role": user.role})
    return receivers
