# Overview: Pytest coverage for the inventory adjuster; policies, idempotency guard and manual adjustments.

"""
Inventory Adjuster Tests

Covers:
- No active warehouse: completion fails, nothing written
- 'reject' shortfall policy
- Unique-constraint conflict treated as already applied
- strict vs. best_effort inventory failure policy
- Manual set/add/subtract adjustments
- Inventory stats
"""

import pytest
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from stockledger.models import (
    MovementType,
    OrderStatus,
    ReferenceType,
    StockMovement,
    Warehouse,
    WarehouseStatus,
)
from stockledger.services import inventory_service, ledger_service, order_service
from stockledger.services.errors import (
    FulfillmentError,
    InsufficientStock,
    NoWarehouseAvailable,
    NotFound,
    StorageConflict,
)


def quantity(db_session, tenant_id, product_id, warehouse_id):
    db_session.expire_all()
    return inventory_service.get_position_quantity(tenant_id, product_id, warehouse_id)


class TestNoWarehouse:
    """A tenant without an active warehouse cannot fulfill."""

    def test_complete_without_warehouse_fails_cleanly(self, db_session, tenant, products, make_order):
        o = make_order(tenant.id, {products["A"].id: 1})

        with pytest.raises(NoWarehouseAvailable):
            order_service.complete_order(o.id, tenant.id, 1)

        db_session.expire_all()
        assert order_service.get_order(o.id, tenant.id).status == OrderStatus.PENDING
        assert db_session.query(StockMovement).count() == 0

    def test_inactive_warehouse_does_not_count(self, db_session, tenant, products, make_order):
        db_session.add(Warehouse(tenant_id=tenant.id, name="Closed", status=WarehouseStatus.INACTIVE))
        db_session.commit()
        o = make_order(tenant.id, {products["A"].id: 1})

        with pytest.raises(NoWarehouseAvailable):
            order_service.complete_order(o.id, tenant.id, 1)

    def test_best_effort_still_surfaces_missing_warehouse(self, app, db_session, tenant, products, make_order, monkeypatch):
        monkeypatch.setitem(app.config, "INVENTORY_FAILURE_POLICY", "best_effort")
        o = make_order(tenant.id, {products["A"].id: 1})

        with pytest.raises(NoWarehouseAvailable):
            order_service.complete_order(o.id, tenant.id, 1)

        db_session.expire_all()
        assert order_service.get_order(o.id, tenant.id).status == OrderStatus.PENDING


class TestShortfallPolicy:
    """STOCK_SHORTFALL_POLICY=reject refuses short orders."""

    def test_reject_policy_raises(self, app, db_session, tenant, warehouse, products, set_stock, make_order, monkeypatch):
        monkeypatch.setitem(app.config, "STOCK_SHORTFALL_POLICY", "reject")
        set_stock(tenant.id, products["A"].id, warehouse.id, 3)
        o = make_order(tenant.id, {products["A"].id: 5})

        with pytest.raises(InsufficientStock) as exc_info:
            order_service.complete_order(o.id, tenant.id, 1)

        assert exc_info.value.details["items"] == [
            {"product_id": products["A"].id, "requested_quantity": 5, "on_hand": 3}
        ]
        assert quantity(db_session, tenant.id, products["A"].id, warehouse.id) == 3
        assert order_service.get_order(o.id, tenant.id).status == OrderStatus.PENDING
        assert ledger_service.has_been_applied(tenant.id, ReferenceType.ORDER, o.id, MovementType.OUT) is False

    def test_reject_policy_allows_exact_stock(self, app, db_session, tenant, warehouse, products, set_stock, make_order, monkeypatch):
        monkeypatch.setitem(app.config, "STOCK_SHORTFALL_POLICY", "reject")
        set_stock(tenant.id, products["A"].id, warehouse.id, 5)
        o = make_order(tenant.id, {products["A"].id: 5})

        order_service.complete_order(o.id, tenant.id, 1)

        assert quantity(db_session, tenant.id, products["A"].id, warehouse.id) == 0

    def test_unknown_policy_is_rejected(self, app, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "STOCK_SHORTFALL_POLICY", "negative")

        with pytest.raises(ValueError):
            inventory_service.get_stock_shortfall_policy()


class TestIdempotencyGuard:
    """The unique ledger key is the final arbiter."""

    def test_storage_conflict_is_a_noop(self, db_session, tenant, warehouse, order, stocked, monkeypatch):
        """A concurrent writer already inserted the OUT row: no double deduction, no error."""
        db_session.add(StockMovement(
            tenant_id=tenant.id,
            product_id=stocked["A"].id,
            warehouse_id=warehouse.id,
            type=MovementType.OUT,
            quantity=5,
            quantity_delta=-5,
            reference_type=ReferenceType.ORDER,
            reference_id=order.id,
            reference_cycle=1,
        ))
        db_session.commit()
        monkeypatch.setattr(ledger_service, "has_been_applied", lambda *args, **kwargs: False)

        result = order_service.complete_order(order.id, tenant.id, 1)

        assert result.order.status == OrderStatus.COMPLETED
        assert result.inventory.applied is False
        assert result.inventory.reason == "storage_conflict"
        assert quantity(db_session, tenant.id, stocked["A"].id, warehouse.id) == 20
        assert quantity(db_session, tenant.id, stocked["B"].id, warehouse.id) == 10
        assert db_session.query(StockMovement).filter_by(
            reference_id=order.id, type=MovementType.OUT
        ).count() == 1

    def test_unexplained_conflict_raises(self, db_session, tenant, warehouse, order, stocked, monkeypatch):
        """A constraint violation with no recorded rows behind it is surfaced."""
        def colliding_append(**kwargs):
            raise IntegrityError("INSERT INTO stock_movements", {}, Exception("UNIQUE constraint failed"))

        monkeypatch.setattr(ledger_service, "append_movement", colliding_append)

        with pytest.raises(StorageConflict):
            order_service.complete_order(order.id, tenant.id, 1)

        db_session.expire_all()
        assert order_service.get_order(order.id, tenant.id).status == OrderStatus.PENDING
        assert quantity(db_session, tenant.id, stocked["A"].id, warehouse.id) == 20

    def test_already_applied_precheck(self, db_session, tenant, warehouse, order, stocked):
        """deduct_for_order called twice in the same cycle writes once."""
        lines = list(order.lines)
        first = inventory_service.deduct_for_order(order, lines, actor_user_id=1)
        db_session.commit()
        second = inventory_service.deduct_for_order(order, lines, actor_user_id=1)
        db_session.commit()

        assert first.applied is True
        assert second.reason == "already_applied"
        assert quantity(db_session, tenant.id, stocked["A"].id, warehouse.id) == 15

    def test_restore_without_deduction(self, db_session, tenant, order):
        outcome = inventory_service.restore_for_order(order, list(order.lines), actor_user_id=1)
        db_session.commit()

        assert outcome.applied is False
        assert outcome.reason == "nothing_to_restore"


class TestFailurePolicy:
    """INVENTORY_FAILURE_POLICY decides whether storage errors abort the transition."""

    @staticmethod
    def _broken_deduct(order, lines, *, actor_user_id):
        raise SQLAlchemyError("disk full")

    def test_strict_aborts_transition(self, db_session, tenant, order, monkeypatch):
        monkeypatch.setattr(inventory_service, "deduct_for_order", self._broken_deduct)

        with pytest.raises(SQLAlchemyError):
            order_service.complete_order(order.id, tenant.id, 1)

        db_session.expire_all()
        assert order_service.get_order(order.id, tenant.id).status == OrderStatus.PENDING

    def test_best_effort_commits_status(self, app, db_session, tenant, warehouse, order, stocked, monkeypatch):
        monkeypatch.setitem(app.config, "INVENTORY_FAILURE_POLICY", "best_effort")
        monkeypatch.setattr(inventory_service, "deduct_for_order", self._broken_deduct)

        result = order_service.complete_order(order.id, tenant.id, 1)

        assert result.order.status == OrderStatus.COMPLETED
        assert result.inventory.applied is False
        assert result.inventory.reason == "failed"
        assert quantity(db_session, tenant.id, stocked["A"].id, warehouse.id) == 20


class TestManualAdjustments:
    """adjust_stock writes one ledger row per non-zero change."""

    def test_set_writes_adjustment_row(self, db_session, tenant, warehouse, products):
        position, movement = inventory_service.adjust_stock(
            tenant_id=tenant.id,
            product_id=products["A"].id,
            warehouse_id=warehouse.id,
            quantity=12,
            adjustment_type="set",
            actor_user_id=3,
        )

        assert position.quantity == 12
        assert movement.type == MovementType.ADJUSTMENT
        assert movement.reference_type == ReferenceType.MANUAL_ADJUSTMENT
        assert movement.reference_id is None
        assert movement.quantity == 12
        assert movement.quantity_delta == 12

    def test_add_and_subtract(self, db_session, tenant, warehouse, products, set_stock):
        set_stock(tenant.id, products["A"].id, warehouse.id, 10)

        _, added = inventory_service.adjust_stock(
            tenant_id=tenant.id, product_id=products["A"].id, warehouse_id=warehouse.id,
            quantity=5, adjustment_type="add",
        )
        position, removed = inventory_service.adjust_stock(
            tenant_id=tenant.id, product_id=products["A"].id, warehouse_id=warehouse.id,
            quantity=40, adjustment_type="subtract",
        )

        assert added.type == MovementType.IN
        assert added.quantity_delta == 5
        assert removed.type == MovementType.OUT
        assert removed.quantity == 40
        assert removed.quantity_delta == -15
        assert position.quantity == 0
        assert ledger_service.reconcile_tenant(tenant.id) == []

    def test_set_to_same_value_writes_nothing(self, db_session, tenant, warehouse, products, set_stock):
        set_stock(tenant.id, products["A"].id, warehouse.id, 7)
        before = db_session.query(StockMovement).count()

        position, movement = inventory_service.adjust_stock(
            tenant_id=tenant.id, product_id=products["A"].id, warehouse_id=warehouse.id, quantity=7,
        )

        assert movement is None
        assert position.quantity == 7
        assert db_session.query(StockMovement).count() == before

    def test_invalid_adjustment_type(self, db_session, tenant, warehouse, products):
        with pytest.raises(FulfillmentError):
            inventory_service.adjust_stock(
                tenant_id=tenant.id, product_id=products["A"].id, warehouse_id=warehouse.id,
                quantity=1, adjustment_type="multiply",
            )

    def test_unknown_product(self, db_session, tenant, warehouse):
        with pytest.raises(NotFound):
            inventory_service.adjust_stock(
                tenant_id=tenant.id, product_id=999999, warehouse_id=warehouse.id, quantity=1,
            )


class TestInventoryStats:

    def test_counts(self, db_session, tenant, warehouse, products, set_stock):
        from stockledger.models import Product

        c = Product(tenant_id=tenant.id, sku="SKU-C", name="Product C", price_cents=100)
        db_session.add(c)
        db_session.commit()

        set_stock(tenant.id, products["A"].id, warehouse.id, 50)
        set_stock(tenant.id, products["B"].id, warehouse.id, 5)
        set_stock(tenant.id, c.id, warehouse.id, 4)
        inventory_service.adjust_stock(
            tenant_id=tenant.id, product_id=c.id, warehouse_id=warehouse.id,
            quantity=4, adjustment_type="subtract",
        )

        stats = inventory_service.get_inventory_stats(tenant.id)

        assert stats == {
            "total_items": 3,
            "low_stock_items": 1,
            "out_of_stock_items": 1,
            "low_stock_threshold": 10,
        }
