# Overview: Stock Validator; read-only pre-flight check of a driver's deliverable stock.

from __future__ import annotations

from ..extensions import db
from ..models import Cylinder
from ..models.cylinders import CYLINDER_FULL, LOCATION_DRIVER
from .results import ServiceError, INSUFFICIENT_STOCK, ZERO_STOCK


class StockError(ServiceError):
    """Raised when a driver cannot cover the quantity an order needs."""

    code = INSUFFICIENT_STOCK

    def __init__(self, message: str, *, code: str, available: int, required: int):
        super().__init__(message, code=code)
        self.available = available
        self.required = required


def available_full_stock(tenant_id: int, driver_id: int) -> int:
    """Count full cylinders currently on the driver's truck."""
    return (
        db.session.query(Cylinder)
        .filter(
            Cylinder.tenant_id == tenant_id,
            Cylinder.current_holder_id == driver_id,
            Cylinder.current_location_type == LOCATION_DRIVER,
            Cylinder.status == CYLINDER_FULL,
        )
        .count()
    )


def ensure_driver_stock(tenant_id: int, driver_id: int, required_qty: int) -> int:
    """
    Verify the driver holds at least ``required_qty`` full cylinders.

    Returns the available count. A required quantity of zero passes
    without querying.

    NOTE: this check and the later asset move are separate statements, so
    two concurrent deliveries by the same driver can both pass. The
    delivery move itself is predicate-qualified and never moves a
    cylinder the driver no longer holds.

    Raises:
        StockError(zero_stock): the truck is empty
        StockError(insufficient_stock): some stock, but less than required
    """
    if required_qty <= 0:
        return 0

    available = available_full_stock(tenant_id, driver_id)
    if available == 0:
        raise StockError(
            "No cylinders found on truck! Cannot complete delivery.",
            code=ZERO_STOCK,
            available=0,
            required=required_qty,
        )
    if available < required_qty:
        raise StockError(
            f"Insufficient stock! You have {available}, but order needs {required_qty}.",
            code=INSUFFICIENT_STOCK,
            available=available,
            required=required_qty,
        )
    return available
