# Overview: Service-layer operations for warehouses; resolution of the default fulfillment location.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Warehouse, WarehouseStatus
from .errors import FulfillmentError, NoWarehouseAvailable, NotFound


def resolve_default_warehouse(tenant_id: int) -> Warehouse:
    """
    Return the oldest ACTIVE warehouse of the tenant.

    All lines of one order are deducted from (and returned to) this one
    warehouse; there is no per-line routing.

    Raises:
        NoWarehouseAvailable: tenant has no active warehouse
    """
    warehouse = (
        db.session.query(Warehouse)
        .filter(
            Warehouse.tenant_id == tenant_id,
            Warehouse.status == WarehouseStatus.ACTIVE,
        )
        .order_by(Warehouse.created_at.asc(), Warehouse.id.asc())
        .first()
    )
    if warehouse is None:
        raise NoWarehouseAvailable(
            "No active warehouse available for fulfillment",
            details={"tenant_id": tenant_id},
        )
    return warehouse


def get_warehouse(tenant_id: int, warehouse_id: int) -> Warehouse:
    warehouse = db.session.query(Warehouse).filter_by(id=warehouse_id, tenant_id=tenant_id).first()
    if warehouse is None:
        raise NotFound(f"Warehouse {warehouse_id} not found", details={"warehouse_id": warehouse_id})
    return warehouse


def list_warehouses(tenant_id: int, *, include_inactive: bool = True) -> list[Warehouse]:
    q = db.session.query(Warehouse).filter(Warehouse.tenant_id == tenant_id)
    if not include_inactive:
        q = q.filter(Warehouse.status == WarehouseStatus.ACTIVE)
    return q.order_by(Warehouse.created_at.asc(), Warehouse.id.asc()).all()


def create_warehouse(
    *,
    tenant_id: int,
    name: str,
    location: str | None = None,
    status: WarehouseStatus = WarehouseStatus.ACTIVE,
) -> Warehouse:
    name = (name or "").strip()
    if not name:
        raise FulfillmentError("Warehouse name is required")

    warehouse = Warehouse(
        tenant_id=tenant_id,
        name=name,
        location=location,
        status=WarehouseStatus(status),
    )
    db.session.add(warehouse)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise FulfillmentError(f"Warehouse {name!r} already exists", details={"name": name})
    return warehouse


def set_warehouse_status(tenant_id: int, warehouse_id: int, status: WarehouseStatus) -> Warehouse:
    """Activate or deactivate a warehouse. Existing stock stays where it is."""
    warehouse = get_warehouse(tenant_id, warehouse_id)
    warehouse.status = WarehouseStatus(status)
    db.session.commit()
    return warehouse
