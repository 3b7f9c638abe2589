from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .enums import OrderStatus, PaymentStatus, order_status_enum, payment_status_enum


class Order(db.Model):
    """
    Customer order, tenant-scoped.

    LIFECYCLE (see services/order_service.py):
        pending <-> processing -> completed -> cancelled | refunded
        completed -> pending | processing  (reopen; stock is restored)

    Created in PENDING with no inventory impact. Only COMPLETED holds a
    stock deduction. fulfillment_cycle is bumped on every reopen so a
    second completion deducts again instead of being treated as a replay.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "order_number", name="uq_orders_tenant_number"),
        db.Index("ix_orders_tenant_status_created", "tenant_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    order_number = db.Column(db.String(64), nullable=False)
    customer_id = db.Column(db.Integer, nullable=True, index=True)

    status = db.Column(order_status_enum, nullable=False, default=OrderStatus.PENDING, index=True)
    payment_status = db.Column(payment_status_enum, nullable=False, default=PaymentStatus.PENDING)
    payment_method = db.Column(db.String(32), nullable=True)

    # All amounts in cents
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    fulfillment_cycle = db.Column(db.Integer, nullable=False, default=1)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    tenant = db.relationship("Tenant", backref=db.backref("orders", lazy=True))
    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        lazy=True,
        order_by="OrderLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "status": str(self.status),
            "payment_status": str(self.payment_status),
            "payment_method": self.payment_method,
            "total_amount_cents": self.total_amount_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "notes": self.notes,
            "fulfillment_cycle": self.fulfillment_cycle,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """Line item on an order. Immutable once the order is created."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    discount_bps = db.Column(db.Integer, nullable=False, default=0)

    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    # (quantity * unit price) - discount + tax
    subtotal_cents = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.String(255), nullable=True)

    order = db.relationship("Order", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "discount_bps": self.discount_bps,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "subtotal_cents": self.subtotal_cents,
            "notes": self.notes,
        }
