# Overview: Service-layer operations for inventory; applies order deductions/restorations and manual adjustments.

"""
Inventory Adjuster Invariants (authoritative)

- An order's deduction (OUT, reference ORDER) and restoration (RETURN,
  reference ORDER_CANCELLATION) are each applied at most once per
  fulfillment cycle.
- Either every line of the order is applied or none: projection updates
  and ledger rows share one savepoint inside the caller's transaction.
- Positions are locked in ascending product_id order to avoid deadlocks
  between orders touching the same products.
- A unique-constraint violation on the ledger means a concurrent caller
  already applied the event: the savepoint is rolled back and the call is
  a no-op, not an error. A violation with no such rows behind it raises
  StorageConflict.
- Restoration returns exactly what the deduction took (-quantity_delta of
  the OUT row) to the warehouse it was taken from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    InventoryPosition,
    MovementType,
    Order,
    OrderLine,
    Product,
    ReferenceType,
    StockMovement,
)
from ..time_utils import utcnow
from . import ledger_service, warehouse_service
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .errors import FulfillmentError, InsufficientStock, NotFound, StorageConflict

logger = logging.getLogger(__name__)

SHORTFALL_FLOOR = "floor"
SHORTFALL_REJECT = "reject"
SHORTFALL_POLICIES = {SHORTFALL_FLOOR, SHORTFALL_REJECT}

FAILURE_STRICT = "strict"
FAILURE_BEST_EFFORT = "best_effort"
FAILURE_POLICIES = {FAILURE_STRICT, FAILURE_BEST_EFFORT}

ADJUST_SET = "set"
ADJUST_ADD = "add"
ADJUST_SUBTRACT = "subtract"
ADJUSTMENT_TYPES = {ADJUST_SET, ADJUST_ADD, ADJUST_SUBTRACT}


def get_stock_shortfall_policy() -> str:
    policy = current_app.config.get("STOCK_SHORTFALL_POLICY", SHORTFALL_FLOOR)
    if policy not in SHORTFALL_POLICIES:
        raise ValueError(f"Unknown STOCK_SHORTFALL_POLICY {policy!r}")
    return policy


def get_inventory_failure_policy() -> str:
    policy = current_app.config.get("INVENTORY_FAILURE_POLICY", FAILURE_STRICT)
    if policy not in FAILURE_POLICIES:
        raise ValueError(f"Unknown INVENTORY_FAILURE_POLICY {policy!r}")
    return policy


@dataclass
class AdjustmentOutcome:
    """What one deduct/restore call did."""
    applied: bool
    reason: str
    warehouse_id: int | None = None
    movements: list[StockMovement] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "applied": self.applied,
            "reason": self.reason,
            "warehouse_id": self.warehouse_id,
            "movement_ids": [m.id for m in self.movements],
        }


def _aggregate_lines(lines: list[OrderLine]) -> dict[int, int]:
    totals: dict[int, int] = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def _get_or_create_position(tenant_id: int, product_id: int, warehouse_id: int) -> InventoryPosition:
    """Locked position row for the key, created with quantity 0 on first use."""
    def _locked():
        return lock_for_update(
            db.session.query(InventoryPosition).filter_by(
                tenant_id=tenant_id,
                product_id=product_id,
                warehouse_id=warehouse_id,
            )
        ).first()

    position = _locked()
    if position is not None:
        return position

    try:
        with db.session.begin_nested():
            position = InventoryPosition(
                tenant_id=tenant_id,
                product_id=product_id,
                warehouse_id=warehouse_id,
                quantity=0,
                last_updated=utcnow(),
            )
            db.session.add(position)
    except IntegrityError:
        # Another transaction created it first
        position = _locked()
        if position is None:
            raise
    return position


def _apply_delta(position: InventoryPosition, delta: int) -> None:
    position.quantity = position.quantity + delta
    position.last_updated = utcnow()


def _ensure_recorded(order: Order, reference_type, movement_type, cycle: int, exc: IntegrityError) -> None:
    """A constraint violation is only a replay if the rows it collided with exist."""
    if not ledger_service.get_reference_movements(
        order.tenant_id, reference_type, order.id, movement_type, cycle=cycle
    ):
        raise StorageConflict(
            f"Ledger write for order {order.order_number} conflicted but no {movement_type} rows are recorded",
            details={"order_id": order.id, "cycle": cycle},
        ) from exc


def get_position_quantity(tenant_id: int, product_id: int, warehouse_id: int) -> int:
    position = db.session.query(InventoryPosition).filter_by(
        tenant_id=tenant_id,
        product_id=product_id,
        warehouse_id=warehouse_id,
    ).first()
    return position.quantity if position else 0


def list_positions(
    *,
    tenant_id: int,
    product_id: int | None = None,
    warehouse_id: int | None = None,
) -> list[InventoryPosition]:
    q = db.session.query(InventoryPosition).filter(InventoryPosition.tenant_id == tenant_id)
    if product_id is not None:
        q = q.filter(InventoryPosition.product_id == product_id)
    if warehouse_id is not None:
        q = q.filter(InventoryPosition.warehouse_id == warehouse_id)
    return q.order_by(InventoryPosition.product_id.asc(), InventoryPosition.warehouse_id.asc()).all()


def deduct_for_order(order: Order, lines: list[OrderLine], *, actor_user_id: int | None) -> AdjustmentOutcome:
    """
    Take an order's lines out of stock (runs inside the caller's transaction).

    1. Already deducted for this fulfillment cycle -> no-op.
    2. Resolve the default warehouse (NoWarehouseAvailable propagates, nothing written).
    3. For each product: on-hand drops by min(requested, on-hand); the OUT row
       records the requested quantity and the applied delta.

    Under the 'reject' shortfall policy any shortfall raises InsufficientStock
    before anything is written.
    """
    begin_write_transaction()
    tenant_id = order.tenant_id
    cycle = order.fulfillment_cycle

    if ledger_service.has_been_applied(
        tenant_id, ReferenceType.ORDER, order.id, MovementType.OUT, cycle=cycle
    ):
        logger.info("Order %s cycle %s already deducted; skipping", order.order_number, cycle)
        return AdjustmentOutcome(applied=False, reason="already_applied")

    warehouse = warehouse_service.resolve_default_warehouse(tenant_id)
    totals = _aggregate_lines(lines)
    policy = get_stock_shortfall_policy()

    try:
        with db.session.begin_nested():
            positions = {
                product_id: _get_or_create_position(tenant_id, product_id, warehouse.id)
                for product_id in sorted(totals)
            }

            short = [
                {
                    "product_id": product_id,
                    "requested_quantity": totals[product_id],
                    "on_hand": positions[product_id].quantity,
                }
                for product_id in sorted(totals)
                if positions[product_id].quantity < totals[product_id]
            ]
            if short and policy == SHORTFALL_REJECT:
                raise InsufficientStock(
                    "Insufficient inventory to fulfill order",
                    details={"order_id": order.id, "warehouse_id": warehouse.id, "items": short},
                )
            for item in short:
                logger.warning(
                    "Order %s short on product %s: requested %s, on hand %s; floored at zero",
                    order.order_number, item["product_id"], item["requested_quantity"], item["on_hand"],
                )

            movements = []
            for product_id in sorted(totals):
                requested = totals[product_id]
                position = positions[product_id]
                taken = min(requested, position.quantity)
                _apply_delta(position, -taken)
                movements.append(ledger_service.append_movement(
                    tenant_id=tenant_id,
                    product_id=product_id,
                    warehouse_id=warehouse.id,
                    movement_type=MovementType.OUT,
                    quantity=requested,
                    quantity_delta=-taken,
                    reference_type=ReferenceType.ORDER,
                    reference_id=order.id,
                    reference_cycle=cycle,
                    created_by_user_id=actor_user_id,
                    note=f"Order {order.order_number} fulfilled",
                ))
    except IntegrityError as exc:
        _ensure_recorded(order, ReferenceType.ORDER, MovementType.OUT, cycle, exc)
        logger.warning(
            "Order %s cycle %s deduction already written by a concurrent call; treating as applied",
            order.order_number, cycle,
        )
        return AdjustmentOutcome(applied=False, reason="storage_conflict", warehouse_id=warehouse.id)

    return AdjustmentOutcome(applied=True, reason="deducted", warehouse_id=warehouse.id, movements=movements)


def restore_for_order(order: Order, lines: list[OrderLine], *, actor_user_id: int | None) -> AdjustmentOutcome:
    """
    Give back what deduct_for_order took for the current fulfillment cycle
    (runs inside the caller's transaction).

    No OUT rows for the cycle (order never fulfilled) -> no-op.
    Each product goes back to the warehouse its OUT row names.
    """
    begin_write_transaction()
    tenant_id = order.tenant_id
    cycle = order.fulfillment_cycle

    outs = ledger_service.get_reference_movements(
        tenant_id, ReferenceType.ORDER, order.id, MovementType.OUT, cycle=cycle
    )
    if not outs:
        return AdjustmentOutcome(applied=False, reason="nothing_to_restore")

    if ledger_service.has_been_applied(
        tenant_id, ReferenceType.ORDER_CANCELLATION, order.id, MovementType.RETURN, cycle=cycle
    ):
        logger.info("Order %s cycle %s already restored; skipping", order.order_number, cycle)
        return AdjustmentOutcome(applied=False, reason="already_applied")

    outs_by_product = {m.product_id: m for m in outs}
    totals = _aggregate_lines(lines)

    try:
        with db.session.begin_nested():
            movements = []
            for product_id in sorted(totals):
                out = outs_by_product.get(product_id)
                if out is None:
                    logger.warning(
                        "Order %s has no deduction for product %s; nothing to restore",
                        order.order_number, product_id,
                    )
                    continue

                returned = -out.quantity_delta
                if returned <= 0:
                    # Fully short at deduction time: nothing was taken
                    continue

                position = _get_or_create_position(tenant_id, product_id, out.warehouse_id)
                _apply_delta(position, returned)
                movements.append(ledger_service.append_movement(
                    tenant_id=tenant_id,
                    product_id=product_id,
                    warehouse_id=out.warehouse_id,
                    movement_type=MovementType.RETURN,
                    quantity=returned,
                    quantity_delta=returned,
                    reference_type=ReferenceType.ORDER_CANCELLATION,
                    reference_id=order.id,
                    reference_cycle=cycle,
                    created_by_user_id=actor_user_id,
                    note=f"Order {order.order_number} unwound",
                ))
    except IntegrityError as exc:
        _ensure_recorded(order, ReferenceType.ORDER_CANCELLATION, MovementType.RETURN, cycle, exc)
        logger.warning(
            "Order %s cycle %s restoration already written by a concurrent call; treating as applied",
            order.order_number, cycle,
        )
        return AdjustmentOutcome(applied=False, reason="storage_conflict")

    warehouse_id = outs[0].warehouse_id
    return AdjustmentOutcome(applied=True, reason="restored", warehouse_id=warehouse_id, movements=movements)


def adjust_stock(
    *,
    tenant_id: int,
    product_id: int,
    warehouse_id: int,
    quantity: int,
    adjustment_type: str = ADJUST_SET,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> tuple[InventoryPosition, StockMovement | None]:
    """
    Manual stock correction against an explicit warehouse.

    - set:      on-hand becomes quantity (ADJUSTMENT row)
    - add:      on-hand grows by quantity (IN row)
    - subtract: on-hand shrinks by quantity, floored or rejected per the
                shortfall policy (OUT row)

    A change of zero writes no ledger row.
    """
    if adjustment_type not in ADJUSTMENT_TYPES:
        raise FulfillmentError(
            f"Invalid adjustment_type {adjustment_type!r}",
            details={"allowed": sorted(ADJUSTMENT_TYPES)},
        )
    if quantity is None or int(quantity) < 0:
        raise FulfillmentError("quantity must be a non-negative integer")
    quantity = int(quantity)

    def _op():
        begin_write_transaction()
        product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
        if product is None:
            raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
        warehouse_service.get_warehouse(tenant_id, warehouse_id)

        position = _get_or_create_position(tenant_id, product_id, warehouse_id)
        old_quantity = position.quantity

        if adjustment_type == ADJUST_ADD:
            movement_type = MovementType.IN
            requested = quantity
            new_quantity = old_quantity + quantity
        elif adjustment_type == ADJUST_SUBTRACT:
            movement_type = MovementType.OUT
            requested = quantity
            if quantity > old_quantity and get_stock_shortfall_policy() == SHORTFALL_REJECT:
                raise InsufficientStock(
                    "Adjustment would make on-hand negative",
                    details={"product_id": product_id, "requested_quantity": quantity, "on_hand": old_quantity},
                )
            new_quantity = max(0, old_quantity - quantity)
        else:
            movement_type = MovementType.ADJUSTMENT
            new_quantity = quantity
            requested = abs(new_quantity - old_quantity)

        delta = new_quantity - old_quantity
        movement = None
        if requested > 0:
            _apply_delta(position, delta)
            movement = ledger_service.append_movement(
                tenant_id=tenant_id,
                product_id=product_id,
                warehouse_id=warehouse_id,
                movement_type=movement_type,
                quantity=requested,
                quantity_delta=delta,
                reference_type=ReferenceType.MANUAL_ADJUSTMENT,
                created_by_user_id=actor_user_id,
                note=note or f"Stock {adjustment_type} from {old_quantity} to {new_quantity}",
            )

        db.session.commit()
        return position, movement

    return run_with_retry(_op)


def get_inventory_stats(tenant_id: int, threshold: int | None = None) -> dict:
    """Position counts for dashboards: total, low (0 < qty < threshold) and out of stock."""
    if threshold is None:
        threshold = int(current_app.config.get("LOW_STOCK_THRESHOLD", 10))

    base = db.session.query(InventoryPosition).filter(InventoryPosition.tenant_id == tenant_id)
    return {
        "total_items": base.count(),
        "low_stock_items": base.filter(
            InventoryPosition.quantity > 0,
            InventoryPosition.quantity < threshold,
        ).count(),
        "out_of_stock_items": base.filter(InventoryPosition.quantity == 0).count(),
        "low_stock_threshold": threshold,
    }
