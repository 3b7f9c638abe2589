# Overview: Pytest coverage for order creation math and default warehouse resolution.

from datetime import timedelta

import pytest
from stockledger.models import Order, OrderStatus, PaymentStatus, StockMovement, Warehouse, WarehouseStatus
from stockledger.services import order_service, warehouse_service
from stockledger.services.errors import FulfillmentError, NoWarehouseAvailable, NotFound
from stockledger.time_utils import utcnow


class TestCreateOrder:

    def test_line_math(self, db_session, tenant, products):
        """3 x 10.00 with 10% discount and 8.25% tax."""
        o = order_service.create_order(
            tenant_id=tenant.id,
            actor_user_id=5,
            lines=[{
                "product_id": products["A"].id,
                "quantity": 3,
                "tax_rate_bps": 825,
                "discount_bps": 1000,
            }],
            payment_method="card",
        )

        line = o.lines[0]
        assert line.unit_price_cents == 1000
        assert line.discount_cents == 300
        assert line.tax_cents == 223
        assert line.subtotal_cents == 2923
        assert o.total_amount_cents == 2923
        assert o.tax_amount_cents == 223
        assert o.discount_amount_cents == 300
        assert o.status == OrderStatus.PENDING
        assert o.payment_status == PaymentStatus.PENDING
        assert o.created_by_user_id == 5

    def test_order_number_format(self, db_session, tenant, products):
        o = order_service.create_order(
            tenant_id=tenant.id, actor_user_id=1, lines=[{"product_id": products["A"].id, "quantity": 1}],
        )

        prefix, stamp, suffix = o.order_number.split("-")
        assert prefix == "ORD"
        assert len(stamp) == 8 and stamp.isdigit()
        assert len(suffix) == 3 and suffix.isdigit()

    def test_creation_has_no_inventory_impact(self, db_session, tenant, products):
        order_service.create_order(
            tenant_id=tenant.id, actor_user_id=1, lines=[{"product_id": products["A"].id, "quantity": 4}],
        )

        assert db_session.query(StockMovement).count() == 0

    def test_empty_order_rejected(self, db_session, tenant):
        with pytest.raises(FulfillmentError):
            order_service.create_order(tenant_id=tenant.id, actor_user_id=1, lines=[])

    def test_non_positive_quantity_rejected(self, db_session, tenant, products):
        with pytest.raises(FulfillmentError):
            order_service.create_order(
                tenant_id=tenant.id, actor_user_id=1, lines=[{"product_id": products["A"].id, "quantity": -2}],
            )

    @pytest.mark.parametrize("bad_quantity", [2.9, True, "2.5", "two", [3]])
    def test_non_integral_quantity_rejected(self, db_session, tenant, products, bad_quantity):
        with pytest.raises(FulfillmentError) as exc_info:
            order_service.create_order(
                tenant_id=tenant.id, actor_user_id=1, lines=[{"product_id": products["A"].id, "quantity": bad_quantity}],
            )

        assert exc_info.value.details["field"] == "quantity"
        assert db_session.query(Order).count() == 0

    def test_integral_float_and_digit_string_accepted(self, db_session, tenant, products):
        o = order_service.create_order(
            tenant_id=tenant.id,
            actor_user_id=1,
            lines=[
                {"product_id": products["A"].id, "quantity": 3.0},
                {"product_id": products["B"].id, "quantity": " 4 "},
            ],
        )

        assert [line.quantity for line in o.lines] == [3, 4]

    def test_fractional_unit_price_rejected(self, db_session, tenant, products):
        with pytest.raises(FulfillmentError) as exc_info:
            order_service.create_order(
                tenant_id=tenant.id,
                actor_user_id=1,
                lines=[{"product_id": products["A"].id, "quantity": 1, "unit_price_cents": 99.5}],
            )

        assert exc_info.value.details["field"] == "unit_price_cents"

    def test_other_tenant_product_rejected(self, db_session, other_tenant, products):
        with pytest.raises(NotFound):
            order_service.create_order(
                tenant_id=other_tenant.id, actor_user_id=1, lines=[{"product_id": products["A"].id, "quantity": 1}],
            )


class TestDefaultWarehouse:
    """The oldest ACTIVE warehouse absorbs order deductions."""

    def test_oldest_active_wins(self, db_session, tenant):
        now = utcnow()
        newer = Warehouse(tenant_id=tenant.id, name="Newer", created_at=now - timedelta(days=1))
        older = Warehouse(tenant_id=tenant.id, name="Older", created_at=now - timedelta(days=10))
        oldest_inactive = Warehouse(
            tenant_id=tenant.id, name="Retired", status=WarehouseStatus.INACTIVE, created_at=now - timedelta(days=100)
        )
        db_session.add_all([newer, older, oldest_inactive])
        db_session.commit()

        assert warehouse_service.resolve_default_warehouse(tenant.id).id == older.id

    def test_other_tenant_warehouse_ignored(self, db_session, tenant, other_tenant, warehouse):
        with pytest.raises(NoWarehouseAvailable):
            warehouse_service.resolve_default_warehouse(other_tenant.id)

    def test_create_duplicate_name(self, db_session, tenant, warehouse):
        with pytest.raises(FulfillmentError):
            warehouse_service.create_warehouse(tenant_id=tenant.id, name="Main")

    def test_same_name_other_tenant(self, db_session, other_tenant, warehouse):
        w = warehouse_service.create_warehouse(tenant_id=other_tenant.id, name="Main")
        assert w.tenant_id == other_tenant.id
