# Overview: Service-layer operations for the stock ledger; append-only movements and the idempotency guard.

"""
Stock Ledger Invariants (authoritative)

- StockMovement rows are append-only: no updates, no deletes.
- Every change to InventoryPosition.quantity is written together with the
  movement that explains it, in the same DB transaction.
- InventoryPosition.quantity == SUM(quantity_delta) for the same
  (tenant, product, warehouse). replay_quantity() recomputes it.
- One fulfillment event writes at most one row per
  (tenant, reference_type, reference_id, type, product, reference_cycle).
  The unique constraint is the final arbiter; has_been_applied() is the
  cheap pre-check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import InventoryPosition, MovementType, ReferenceType, StockMovement
from ..time_utils import utcnow
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


def append_movement(
    *,
    tenant_id: int,
    product_id: int,
    warehouse_id: int,
    movement_type: MovementType,
    quantity: int,
    quantity_delta: int,
    reference_type: ReferenceType,
    reference_id: int | None = None,
    reference_cycle: int = 1,
    created_by_user_id: int | None = None,
    note: str | None = None,
) -> StockMovement:
    """
    Append one ledger row and flush it.

    The flush surfaces uniqueness violations (IntegrityError) to the caller
    immediately, while it can still roll back its savepoint.
    """
    if quantity <= 0:
        raise ValueError("movement quantity must be positive")

    movement = StockMovement(
        tenant_id=tenant_id,
        product_id=product_id,
        warehouse_id=warehouse_id,
        type=MovementType(movement_type),
        quantity=quantity,
        quantity_delta=quantity_delta,
        reference_type=ReferenceType(reference_type),
        reference_id=reference_id,
        reference_cycle=reference_cycle,
        created_by_user_id=created_by_user_id,
        note=note,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def _reference_query(
    tenant_id: int,
    reference_type: ReferenceType,
    reference_id: int,
    movement_type: MovementType,
    cycle: int | None,
):
    q = db.session.query(StockMovement).filter(
        StockMovement.tenant_id == tenant_id,
        StockMovement.reference_type == reference_type,
        StockMovement.reference_id == reference_id,
        StockMovement.type == movement_type,
    )
    if cycle is not None:
        q = q.filter(StockMovement.reference_cycle == cycle)
    return q


def has_been_applied(
    tenant_id: int,
    reference_type: ReferenceType,
    reference_id: int,
    movement_type: MovementType,
    *,
    cycle: int | None = None,
) -> bool:
    """
    True if at least one movement exists for the reference triple.

    Pass cycle to scope the check to one fulfillment cycle of an order.
    Not race-free on its own: callers run it inside the write transaction
    and still rely on uq_movements_reference.
    """
    q = _reference_query(tenant_id, reference_type, reference_id, movement_type, cycle)
    return db.session.query(q.exists()).scalar()


def get_reference_movements(
    tenant_id: int,
    reference_type: ReferenceType,
    reference_id: int,
    movement_type: MovementType,
    *,
    cycle: int | None = None,
) -> list[StockMovement]:
    q = _reference_query(tenant_id, reference_type, reference_id, movement_type, cycle)
    return q.order_by(StockMovement.id.asc()).all()


def list_movements(
    *,
    tenant_id: int,
    product_id: int | None = None,
    warehouse_id: int | None = None,
    reference_type: ReferenceType | None = None,
    reference_id: int | None = None,
    since: datetime | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    """Newest-first ledger listing, always tenant-scoped."""
    q = db.session.query(StockMovement).filter(StockMovement.tenant_id == tenant_id)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if warehouse_id is not None:
        q = q.filter(StockMovement.warehouse_id == warehouse_id)
    if reference_type is not None:
        q = q.filter(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        q = q.filter(StockMovement.reference_id == reference_id)
    if since is not None:
        q = q.filter(StockMovement.created_at >= since)

    return q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).all()


def replay_quantity(tenant_id: int, product_id: int, warehouse_id: int) -> int:
    """Recompute on-hand for one key from the ledger."""
    total = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity_delta), 0)
    ).filter(
        StockMovement.tenant_id == tenant_id,
        StockMovement.product_id == product_id,
        StockMovement.warehouse_id == warehouse_id,
    ).scalar()
    return int(total or 0)


@dataclass
class PositionDrift:
    product_id: int
    warehouse_id: int
    projected: int
    replayed: int

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "projected": self.projected,
            "replayed": self.replayed,
        }


def reconcile_tenant(tenant_id: int, *, fix: bool = False) -> list[PositionDrift]:
    """
    Compare every projection of a tenant with its ledger replay.

    With fix=True the projection is overwritten with the replayed value
    and committed. The ledger itself is never touched.
    """
    replayed = {
        (row.product_id, row.warehouse_id): int(row.total or 0)
        for row in db.session.query(
            StockMovement.product_id,
            StockMovement.warehouse_id,
            func.sum(StockMovement.quantity_delta).label("total"),
        )
        .filter(StockMovement.tenant_id == tenant_id)
        .group_by(StockMovement.product_id, StockMovement.warehouse_id)
        .all()
    }

    q = db.session.query(InventoryPosition).filter(InventoryPosition.tenant_id == tenant_id)
    if fix:
        q = lock_for_update(q)
    positions = {(p.product_id, p.warehouse_id): p for p in q.all()}

    drifts: list[PositionDrift] = []
    for key in sorted(set(replayed) | set(positions)):
        position = positions.get(key)
        projected = position.quantity if position else 0
        expected = replayed.get(key, 0)
        if projected == expected:
            continue
        drifts.append(PositionDrift(key[0], key[1], projected, expected))
        logger.warning(
            "Inventory projection drift tenant=%s product=%s warehouse=%s projected=%s replayed=%s",
            tenant_id, key[0], key[1], projected, expected,
        )
        if fix:
            if position is None:
                position = InventoryPosition(
                    tenant_id=tenant_id, product_id=key[0], warehouse_id=key[1], quantity=0
                )
                db.session.add(position)
            position.quantity = expected
            position.last_updated = utcnow()

    if fix and drifts:
        db.session.commit()
    return drifts
