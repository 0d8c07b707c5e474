from __future__ import annotations

from ..extensions import db
from lpg_dispatch.time_utils import to_utc_z


# Cylinder status values
CYLINDER_FULL = "full"
CYLINDER_EMPTY = "empty"
CYLINDER_AT_CUSTOMER = "at_customer"
CYLINDER_HANDOVER_PENDING = "handover_pending"

CYLINDER_STATUSES = (
    CYLINDER_FULL,
    CYLINDER_EMPTY,
    CYLINDER_AT_CUSTOMER,
    CYLINDER_HANDOVER_PENDING,
)

# Location types
LOCATION_WAREHOUSE = "warehouse"
LOCATION_DRIVER = "driver"
LOCATION_CUSTOMER = "customer"

LOCATION_TYPES = (LOCATION_WAREHOUSE, LOCATION_DRIVER, LOCATION_CUSTOMER)


class Cylinder(db.Model):
    """
    A physical gas cylinder (asset), identified by its serial number.

    LOCATION INVARIANT:
    - location "driver"    -> current_holder_id is a driver user id
    - location "customer"  -> current_holder_id is a customer id
    - location "warehouse" -> current_holder_id is NULL

    current_holder_id is deliberately not a foreign key: it points at
    users or customers depending on current_location_type. Only
    asset_service writes these columns, always as a (location, holder)
    pair.

    HANDOVER HOLD:
    status "handover_pending" is a transient lock, left only by approval
    (warehouse, empty) or rejection (driver, empty). status_before_hold
    shows what the cylinder was while the lock is held; hold_token
    identifies the lock batch. Both are cleared when the lock ends.
    """
    __tablename__ = "cylinders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "serial_number", name="uq_cylinders_tenant_serial"),
        db.Index("ix_cylinders_holder_location_status", "tenant_id", "current_holder_id", "current_location_type", "status"),
        db.Index("ix_cylinders_last_order", "tenant_id", "last_order_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    serial_number = db.Column(db.String(64), nullable=False)
    size = db.Column(db.String(16), nullable=False)

    status = db.Column(db.String(24), nullable=False, default=CYLINDER_FULL, index=True)
    current_location_type = db.Column(db.String(16), nullable=False, default=LOCATION_WAREHOUSE)
    current_holder_id = db.Column(db.Integer, nullable=True)

    last_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    status_before_hold = db.Column(db.String(24), nullable=True)
    hold_token = db.Column(db.String(32), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    last_order = db.relationship("Order", foreign_keys=[last_order_id], backref=db.backref("cylinders", lazy=True))

    def __repr__(self) -> str:
        return (
            f"<Cylinder {self.serial_number!r} status={self.status} "
            f"at={self.current_location_type}:{self.current_holder_id}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "serial_number": self.serial_number,
            "size": self.size,
            "status": self.status,
            "current_location_type": self.current_location_type,
            "current_holder_id": self.current_holder_id,
            "last_order_id": self.last_order_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
