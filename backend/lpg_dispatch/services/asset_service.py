# Overview: Asset Location Tracker; moves cylinders between warehouse, drivers and customers.

"""
Cylinder movement service.

WHY: A cylinder's (location, holder, status) triple is the only record of
where a physical asset is. Every write here is a predicate-qualified bulk
UPDATE: the WHERE clause restates the state the cylinder must be in, so a
row that changed hands since it was read is simply not updated. Callers
compare the returned row counts with what they asked for.

MOVES:
    warehouse(full)  --load-------> driver(full)
    driver(full)     --deliver----> customer(at_customer)
    customer         --return-----> driver(empty)
    driver(full|empty) --lock-----> driver(handover_pending)
    driver(handover_pending) --release--> driver(empty)
    driver(handover_pending) --approve--> warehouse(empty)

Functions only stage writes in the session; committing is the caller's
unit of work. No function here deletes cylinder rows.
"""

from __future__ import annotations

import secrets
from typing import Iterable

from sqlalchemy import or_

from ..extensions import db
from ..models import Cylinder, Order
from ..models.cylinders import (
    CYLINDER_FULL,
    CYLINDER_EMPTY,
    CYLINDER_AT_CUSTOMER,
    CYLINDER_HANDOVER_PENDING,
    LOCATION_WAREHOUSE,
    LOCATION_DRIVER,
    LOCATION_CUSTOMER,
)
from ..time_utils import utcnow
from .results import ServiceError, VALIDATION


class AssetError(ServiceError):
    """Raised for invalid cylinder operations (duplicate serials, bad input)."""

    code = VALIDATION


def _cylinders(tenant_id: int):
    return db.session.query(Cylinder).filter(Cylinder.tenant_id == tenant_id)


def normalize_serials(serials: Iterable[str] | None) -> list[str]:
    """Strip blanks and duplicates while keeping the caller's order."""
    seen: dict[str, None] = {}
    for serial in serials or ():
        value = str(serial).strip()
        if value:
            seen.setdefault(value, None)
    return list(seen)


# =============================================================================
# INTAKE / DISPATCH
# =============================================================================

def intake_cylinder(tenant_id: int, serial_number: str, size: str) -> Cylinder:
    """Register a new full cylinder in the warehouse."""
    serial_number = (serial_number or "").strip()
    if not serial_number:
        raise AssetError("Serial number is required")
    if not size:
        raise AssetError("Cylinder size is required")

    exists = _cylinders(tenant_id).filter(Cylinder.serial_number == serial_number).first()
    if exists:
        raise AssetError(f"Cylinder {serial_number} already exists")

    cylinder = Cylinder(
        tenant_id=tenant_id,
        serial_number=serial_number,
        size=size,
        status=CYLINDER_FULL,
        current_location_type=LOCATION_WAREHOUSE,
        current_holder_id=None,
    )
    db.session.add(cylinder)
    db.session.flush()
    return cylinder


def load_driver(tenant_id: int, driver_id: int, serials: Iterable[str], order_id: int | None = None) -> int:
    """
    Load full warehouse cylinders onto a driver's truck.

    When order_id is given the cylinders are linked to that order so the
    delivery step can move exactly these cylinders.
    """
    serials = normalize_serials(serials)
    if not serials:
        return 0

    values = {
        Cylinder.current_location_type: LOCATION_DRIVER,
        Cylinder.current_holder_id: driver_id,
        Cylinder.updated_at: utcnow(),
    }
    if order_id is not None:
        values[Cylinder.last_order_id] = order_id

    return (
        _cylinders(tenant_id)
        .filter(
            Cylinder.serial_number.in_(serials),
            Cylinder.current_location_type == LOCATION_WAREHOUSE,
            Cylinder.status == CYLINDER_FULL,
        )
        .update(values, synchronize_session=False)
    )


# =============================================================================
# DELIVERY / RETURNS
# =============================================================================

def deliver_order_cylinders(tenant_id: int, order: Order, driver_id: int, required_qty: int) -> int:
    """
    Move the order's cylinders from the driver's truck to the customer.

    1. Robust link: cylinders stamped with last_order_id = order.id that
       are still full on this driver's truck.
    2. Fallback (link drift): when nothing is linked, any ``required_qty``
       full cylinders on the truck, stamped with the order for
       traceability.

    Returns the number of cylinders moved.
    """
    now = utcnow()
    delivered_values = {
        Cylinder.current_location_type: LOCATION_CUSTOMER,
        Cylinder.current_holder_id: order.customer_id,
        Cylinder.status: CYLINDER_AT_CUSTOMER,
        Cylinder.updated_at: now,
    }
    on_truck = (
        Cylinder.current_holder_id == driver_id,
        Cylinder.current_location_type == LOCATION_DRIVER,
        Cylinder.status == CYLINDER_FULL,
    )

    moved = (
        _cylinders(tenant_id)
        .filter(Cylinder.last_order_id == order.id, *on_truck)
        .update(delivered_values, synchronize_session=False)
    )
    if moved or required_qty <= 0:
        return moved

    candidate_ids = [
        row.id
        for row in db.session.query(Cylinder.id)
        .filter(Cylinder.tenant_id == tenant_id, *on_truck)
        .order_by(Cylinder.id)
        .limit(required_qty)
    ]
    if not candidate_ids:
        return 0

    return (
        _cylinders(tenant_id)
        .filter(Cylinder.id.in_(candidate_ids), *on_truck)
        .update({**delivered_values, Cylinder.last_order_id: order.id}, synchronize_session=False)
    )


def return_cylinders(
    tenant_id: int,
    order: Order,
    driver_id: int,
    serials: Iterable[str] | None = None,
    count: int = 0,
) -> int:
    """
    Asset swap: move returned cylinders from the customer side to the driver as empty.

    Explicit serials take precedence. Without serials, ``count`` selects
    that many cylinders held by the order's customer (legacy count mode).

    Returns the number of cylinders moved.
    """
    serials = normalize_serials(serials)
    returned_values = {
        Cylinder.current_location_type: LOCATION_DRIVER,
        Cylinder.current_holder_id: driver_id,
        Cylinder.status: CYLINDER_EMPTY,
        Cylinder.updated_at: utcnow(),
    }

    if serials:
        return (
            _cylinders(tenant_id)
            .filter(
                Cylinder.serial_number.in_(serials),
                Cylinder.current_location_type == LOCATION_CUSTOMER,
                Cylinder.status == CYLINDER_AT_CUSTOMER,
            )
            .update(returned_values, synchronize_session=False)
        )

    if count <= 0:
        return 0

    # Cylinders this order just delivered are not returns
    at_customer = (
        Cylinder.current_holder_id == order.customer_id,
        Cylinder.current_location_type == LOCATION_CUSTOMER,
        or_(Cylinder.last_order_id.is_(None), Cylinder.last_order_id != order.id),
    )
    candidate_ids = [
        row.id
        for row in db.session.query(Cylinder.id)
        .filter(Cylinder.tenant_id == tenant_id, *at_customer)
        .order_by(Cylinder.id)
        .limit(count)
    ]
    if not candidate_ids:
        return 0

    return (
        _cylinders(tenant_id)
        .filter(Cylinder.id.in_(candidate_ids), *at_customer)
        .update(returned_values, synchronize_session=False)
    )


# =============================================================================
# HANDOVER HOLDS
# =============================================================================

def lock_for_handover(tenant_id: int, driver_id: int, serials: Iterable[str]) -> tuple[int, str]:
    """
    Lock the driver's cylinders for a pending handover.

    Ownership is enforced by the UPDATE predicate itself (holder = driver,
    location = driver, not already held), not by a prior read. The current
    status is copied into status_before_hold in the same statement.

    Returns (locked_count, hold_token).
    """
    serials = normalize_serials(serials)
    hold_token = secrets.token_hex(8)
    if not serials:
        return 0, hold_token

    locked = (
        _cylinders(tenant_id)
        .filter(
            Cylinder.serial_number.in_(serials),
            Cylinder.current_holder_id == driver_id,
            Cylinder.current_location_type == LOCATION_DRIVER,
            Cylinder.status.in_((CYLINDER_FULL, CYLINDER_EMPTY)),
        )
        .update(
            {
                Cylinder.status_before_hold: Cylinder.status,
                Cylinder.status: CYLINDER_HANDOVER_PENDING,
                Cylinder.hold_token: hold_token,
                Cylinder.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )
    return locked, hold_token


def release_hold(
    tenant_id: int,
    driver_id: int,
    *,
    hold_token: str | None = None,
    serials: Iterable[str] | None = None,
) -> int:
    """
    Revert the driver's handover_pending cylinders to "empty" on the truck.

    Narrowed to one lock batch (hold_token) and/or a serial set when given;
    otherwise every held cylinder of the driver. The hold bookkeeping
    (status_before_hold, hold_token) is cleared.
    """
    query = _cylinders(tenant_id).filter(
        Cylinder.current_holder_id == driver_id,
        Cylinder.current_location_type == LOCATION_DRIVER,
        Cylinder.status == CYLINDER_HANDOVER_PENDING,
    )
    if hold_token is not None:
        query = query.filter(Cylinder.hold_token == hold_token)
    if serials is not None:
        query = query.filter(Cylinder.serial_number.in_(normalize_serials(serials)))

    return query.update(
        {
            Cylinder.status: CYLINDER_EMPTY,
            Cylinder.status_before_hold: None,
            Cylinder.hold_token: None,
            Cylinder.updated_at: utcnow(),
        },
        synchronize_session=False,
    )


def move_held_to_warehouse(tenant_id: int, driver_id: int) -> int:
    """
    Finalize a handover: every held cylinder of the driver goes to the warehouse.

    Handed-in cylinders are booked as "empty"; refilling is a separate
    warehouse step.
    """
    return (
        _cylinders(tenant_id)
        .filter(
            Cylinder.current_holder_id == driver_id,
            Cylinder.current_location_type == LOCATION_DRIVER,
            Cylinder.status == CYLINDER_HANDOVER_PENDING,
        )
        .update(
            {
                Cylinder.status: CYLINDER_EMPTY,
                Cylinder.current_location_type: LOCATION_WAREHOUSE,
                Cylinder.current_holder_id: None,
                Cylinder.status_before_hold: None,
                Cylinder.hold_token: None,
                Cylinder.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )


def held_serials(tenant_id: int, driver_id: int) -> list[str]:
    """Serials currently locked for a handover by this driver."""
    rows = (
        db.session.query(Cylinder.serial_number)
        .filter(
            Cylinder.tenant_id == tenant_id,
            Cylinder.current_holder_id == driver_id,
            Cylinder.current_location_type == LOCATION_DRIVER,
            Cylinder.status == CYLINDER_HANDOVER_PENDING,
        )
        .order_by(Cylinder.serial_number)
    )
    return [row.serial_number for row in rows]
