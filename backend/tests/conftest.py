"""
Pytest fixtures for stockledger backend tests.

Provides a file-backed SQLite database (so concurrent sessions really
contend for the write lock), tenant/warehouse/product fixtures and a
test client.
"""

from datetime import timedelta

import pytest
from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Product, Tenant, Warehouse, WarehouseStatus
from stockledger.services import inventory_service, order_service
from stockledger.time_utils import utcnow


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("db") / "stockledger-test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'INVENTORY_FAILURE_POLICY': 'strict',
        'STOCK_SHORTFALL_POLICY': 'floor',
        'LOW_STOCK_THRESHOLD': 10,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def tenant(db_session):
    """Create Tenant A (first tenant)."""
    t = Tenant(name="Tenant A - Acme Corp", code="ACME", is_active=True)
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture(scope='function')
def other_tenant(db_session):
    """Create Tenant B (second tenant)."""
    t = Tenant(name="Tenant B - Beta Inc", code="BETA", is_active=True)
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture(scope='function')
def warehouse(db_session, tenant):
    """Default (oldest active) warehouse of Tenant A."""
    w = Warehouse(
        tenant_id=tenant.id,
        name="Main",
        status=WarehouseStatus.ACTIVE,
        created_at=utcnow() - timedelta(days=30),
    )
    db_session.add(w)
    db_session.commit()
    return w


@pytest.fixture(scope='function')
def products(db_session, tenant):
    """Products A and B of Tenant A, returned as {"A": ..., "B": ...}."""
    a = Product(tenant_id=tenant.id, sku="SKU-A", name="Product A", price_cents=1000, tax_rate_bps=0)
    b = Product(tenant_id=tenant.id, sku="SKU-B", name="Product B", price_cents=2500, tax_rate_bps=0)
    db_session.add_all([a, b])
    db_session.commit()
    return {"A": a, "B": b}


def _set_stock(tenant_id: int, product_id: int, warehouse_id: int, quantity: int):
    """Seed on-hand through the ledger so projection and replay agree."""
    position, _ = inventory_service.adjust_stock(
        tenant_id=tenant_id,
        product_id=product_id,
        warehouse_id=warehouse_id,
        quantity=quantity,
        adjustment_type="set",
        note="test seed",
    )
    return position


def _make_order(tenant_id: int, items: dict, actor_user_id: int | None = 1):
    """Create a PENDING order from {product_id: quantity}."""
    return order_service.create_order(
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        lines=[{"product_id": pid, "quantity": qty} for pid, qty in items.items()],
    )


@pytest.fixture(scope='function')
def stocked(db_session, tenant, warehouse, products):
    """A=20, B=10 in the default warehouse."""
    _set_stock(tenant.id, products["A"].id, warehouse.id, 20)
    _set_stock(tenant.id, products["B"].id, warehouse.id, 10)
    return products


@pytest.fixture(scope='function')
def order(db_session, tenant, stocked):
    """PENDING order for A x5, B x2."""
    return _make_order(tenant.id, {stocked["A"].id: 5, stocked["B"].id: 2})


def tenant_headers(tenant_id: int, user_id: int | None = 1) -> dict:
    """Helper to create tenant context headers."""
    headers = {"X-Tenant-Id": str(tenant_id)}
    if user_id is not None:
        headers["X-User-Id"] = str(user_id)
    return headers


@pytest.fixture(scope="function")
def set_stock(db_session):
    """Seed helper: set_stock(tenant_id, product_id, warehouse_id, quantity)."""
    return _set_stock


@pytest.fixture(scope="function")
def make_order(db_session):
    """Order helper: make_order(tenant_id, {product_id: quantity})."""
    return _make_order


@pytest.fixture(scope="function")
def headers(tenant):
    """X-Tenant-Id / X-User-Id headers for Tenant A."""
    return tenant_headers(tenant.id)
