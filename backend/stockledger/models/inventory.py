from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .enums import (
    MovementType,
    WarehouseStatus,
    movement_type_enum,
    reference_type_enum,
    warehouse_status_enum,
)


class Product(db.Model):
    """
    Product master data, tenant-scoped.

    SKUs are unique within a tenant. Prices are stored in cents and tax
    rates in basis points (825 = 8.25%).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
        db.Index("ix_products_tenant_name", "tenant_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    price_cents = db.Column(db.Integer, nullable=True)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Warehouse(db.Model):
    """
    Physical or logical stock location.

    A tenant needs at least one ACTIVE warehouse before any order can be
    fulfilled; the oldest active one absorbs order deductions.
    """
    __tablename__ = "warehouses"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_warehouses_tenant_name"),
        db.Index("ix_warehouses_tenant_status_created", "tenant_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    location = db.Column(db.String(255), nullable=True)
    status = db.Column(warehouse_status_enum, nullable=False, default=WarehouseStatus.ACTIVE)

    # Python-side default keeps ordering stable within one second on SQLite
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    tenant = db.relationship("Tenant", backref=db.backref("warehouses", lazy=True))

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} name={self.name!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "location": self.location,
            "status": str(self.status),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryPosition(db.Model):
    """
    Current on-hand quantity for (tenant, product, warehouse).

    PROJECTION: always equal to SUM(StockMovement.quantity_delta) for the
    same key. Persisted for O(1) reads and row-level locking; created lazily
    on the first movement for a key. Never negative.
    """
    __tablename__ = "inventory_positions"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "product_id", "warehouse_id", name="uq_positions_tenant_product_wh"),
        db.CheckConstraint("quantity >= 0", name="ck_positions_quantity_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    last_updated = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    warehouse = db.relationship("Warehouse")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryPosition product_id={self.product_id} "
            f"warehouse_id={self.warehouse_id} quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "quantity": self.quantity,
            "last_updated": to_utc_z(self.last_updated),
            "version_id": self.version_id,
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger entry. Never updated or deleted.

    quantity:        the requested amount (always positive)
    quantity_delta:  the signed change actually applied to the projection.
                     Differs from +/-quantity only when an OUT movement hit
                     the zero floor; the difference is the shortfall.

    IDEMPOTENCY: one fulfillment event writes at most one row per product,
    enforced by uq_movements_reference. reference_cycle separates the
    deductions of an order that was reopened and completed again.
    Manual adjustments carry reference_id NULL and are never deduplicated.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint(
            "tenant_id",
            "reference_type",
            "reference_id",
            "type",
            "product_id",
            "reference_cycle",
            name="uq_movements_reference",
        ),
        db.CheckConstraint("quantity > 0", name="ck_movements_quantity_positive"),
        db.Index("ix_movements_tenant_reference", "tenant_id", "reference_type", "reference_id", "type"),
        db.Index("ix_movements_tenant_product_wh_created", "tenant_id", "product_id", "warehouse_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    type = db.Column(movement_type_enum, nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    quantity_delta = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(reference_type_enum, nullable=False)
    reference_id = db.Column(db.Integer, nullable=True)
    reference_cycle = db.Column(db.Integer, nullable=False, default=1)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    note = db.Column(db.String(255), nullable=True)

    product = db.relationship("Product")
    warehouse = db.relationship("Warehouse")

    @property
    def shortfall(self) -> int:
        if self.type == MovementType.OUT:
            return self.quantity + self.quantity_delta
        return 0

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} type={self.type} product_id={self.product_id} "
            f"quantity={self.quantity} ref={self.reference_type}:{self.reference_id}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "type": str(self.type),
            "quantity": self.quantity,
            "quantity_delta": self.quantity_delta,
            "shortfall": self.shortfall,
            "reference_type": str(self.reference_type) if self.reference_type else None,
            "reference_id": self.reference_id,
            "reference_cycle": self.reference_cycle,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "note": self.note,
        }
