from __future__ import annotations

from ..extensions import db
from lpg_dispatch.time_utils import to_utc_z


ORDER_ASSIGNED = "assigned"
ORDER_ON_TRIP = "on_trip"
ORDER_DELIVERED = "delivered"

ACTIVE_ORDER_STATUSES = (ORDER_ASSIGNED, ORDER_ON_TRIP)


class Order(db.Model):
    """
    A delivery order assigned to one driver for one customer.

    total_amount_cents is fixed when the order is created; settlement only
    writes status, amount_received_cents, payment_method, notes, proof_url
    and the trip timestamps. Orders are never deleted.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "friendly_id", name="uq_orders_tenant_friendly_id"),
        db.Index("ix_orders_tenant_driver_status", "tenant_id", "driver_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    friendly_id = db.Column(db.String(32), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=ORDER_ASSIGNED, index=True)

    payment_method = db.Column(db.String(16), nullable=True)
    amount_received_cents = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    proof_url = db.Column(db.String(512), nullable=True)

    trip_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    trip_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    driver = db.relationship("User", foreign_keys=[driver_id])
    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")

    @property
    def display_id(self) -> str:
        return self.friendly_id or str(self.id)

    @property
    def required_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "friendly_id": self.friendly_id,
            "customer_id": self.customer_id,
            "driver_id": self.driver_id,
            "total_amount_cents": self.total_amount_cents,
            "status": self.status,
            "payment_method": self.payment_method,
            "amount_received_cents": self.amount_received_cents,
            "notes": self.notes,
            "proof_url": self.proof_url,
            "trip_started_at": to_utc_z(self.trip_started_at),
            "trip_completed_at": to_utc_z(self.trip_completed_at),
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_name = db.Column(db.String(128), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
        }
