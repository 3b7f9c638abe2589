# Overview: Flask CLI command groups for bootstrap, fulfillment and ledger maintenance.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Tenants:
# - python -m flask tenants create --name "Acme Corp" --code "ACME"
# - python -m flask tenants list
#
# Warehouses:
# - python -m flask warehouses create --tenant-id 1 --name "Main" [--location "Dock 3"] [--inactive]
# - python -m flask warehouses list --tenant-id 1
#
# Inventory:
# - python -m flask inventory reconcile --tenant-id 1 [--fix]
#   Compare projections with the ledger replay; --fix overwrites drifted projections.
#
# Orders:
# - python -m flask orders complete --tenant-id 1 --order-id 5 [--user-id 2]
# - python -m flask orders cancel --tenant-id 1 --order-id 5 [--user-id 2]
# - python -m flask orders set-status --tenant-id 1 --order-id 5 --status processing [--user-id 2]

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import OrderStatus, Tenant, WarehouseStatus
from .services import ledger_service, order_service, warehouse_service
from .services.errors import FulfillmentError


# =============================================================================
# TENANTS
# =============================================================================

@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active'}")
    click.echo("="*60)
    for tenant in tenants:
        active_str = "Yes" if tenant.is_active else "No"
        click.echo(f"{tenant.id:<5} {tenant.name:<30} {tenant.code or '-':<15} {active_str}")
    click.echo("="*60 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_tenant_cli(name, code):
    """Create a new tenant."""
    existing = db.session.query(Tenant).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Tenant with code '{code}' already exists")
        return

    tenant = Tenant(name=name, code=code, is_active=True)
    db.session.add(tenant)
    db.session.commit()

    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")


# =============================================================================
# WAREHOUSES
# =============================================================================

@click.group('warehouses')
def warehouses_group():
    """Warehouse management commands."""


@warehouses_group.command('create')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--name', required=True, help='Warehouse name (unique within tenant)')
@click.option('--location', help='Free-form location')
@click.option('--inactive', is_flag=True, help='Create in INACTIVE status')
@with_appcontext
def create_warehouse_cli(tenant_id, name, location, inactive):
    """Create a warehouse. The oldest active one receives order deductions."""
    try:
        warehouse = warehouse_service.create_warehouse(
            tenant_id=tenant_id,
            name=name,
            location=location,
            status=WarehouseStatus.INACTIVE if inactive else WarehouseStatus.ACTIVE,
        )
    except FulfillmentError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created warehouse: {warehouse.name} (ID: {warehouse.id}, Status: {warehouse.status})")


@warehouses_group.command('list')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@with_appcontext
def list_warehouses_cli(tenant_id):
    """List warehouses, default fulfillment location first."""
    warehouses = warehouse_service.list_warehouses(tenant_id)

    if not warehouses:
        click.echo("No warehouses found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<25} {'Location':<25} {'Status':<10} {'Created'}")
    click.echo("="*80)
    for w in warehouses:
        click.echo(f"{w.id:<5} {w.name:<25} {w.location or '-':<25} {str(w.status):<10} {w.created_at:%Y-%m-%d %H:%M}")
    click.echo("="*80 + "\n")


# =============================================================================
# INVENTORY
# =============================================================================

@click.group('inventory')
def inventory_group():
    """Inventory ledger maintenance commands."""


@inventory_group.command('reconcile')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--fix', is_flag=True, help='Overwrite drifted projections with the ledger replay')
@with_appcontext
def reconcile_cli(tenant_id, fix):
    """Compare on-hand projections with SUM(quantity_delta) of the ledger."""
    drifts = ledger_service.reconcile_tenant(tenant_id, fix=fix)

    if not drifts:
        click.echo("PASS All inventory positions match the ledger")
        return

    for d in drifts:
        click.echo(
            f"DRIFT product={d.product_id} warehouse={d.warehouse_id} "
            f"projected={d.projected} ledger={d.replayed}"
        )
    if fix:
        click.echo(f"PASS Fixed {len(drifts)} position(s)")
    else:
        click.echo(f"FAIL {len(drifts)} position(s) drifted (re-run with --fix to repair)")


# =============================================================================
# ORDERS
# =============================================================================

@click.group('orders')
def orders_group():
    """Order lifecycle commands."""


def _echo_transition(result):
    order = result.order
    click.echo(f"PASS Order {order.order_number}: {result.previous_status} -> {order.status}")
    if result.inventory is not None:
        click.echo(f"   Inventory: {result.inventory.reason}")
    if result.cascade is not None:
        click.echo(
            f"   Receipts voided: {len(result.cascade.voided)}, "
            f"failed: {len(result.cascade.failed)}"
        )


def _run_transition(func, *args):
    try:
        result = func(*args)
    except FulfillmentError as e:
        click.echo(f"FAIL {e.code}: {e}")
        return
    _echo_transition(result)


@orders_group.command('complete')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--order-id', type=int, required=True, help='Order ID')
@click.option('--user-id', type=int, help='Acting user ID')
@with_appcontext
def complete_order_cli(tenant_id, order_id, user_id):
    """Complete an order and deduct its stock."""
    _run_transition(order_service.complete_order, order_id, tenant_id, user_id)


@orders_group.command('cancel')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--order-id', type=int, required=True, help='Order ID')
@click.option('--user-id', type=int, help='Acting user ID')
@with_appcontext
def cancel_order_cli(tenant_id, order_id, user_id):
    """Cancel an order, restoring stock if it was completed."""
    _run_transition(order_service.cancel_order, order_id, tenant_id, user_id)


@orders_group.command('set-status')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--order-id', type=int, required=True, help='Order ID')
@click.option('--status', type=click.Choice([s.value for s in OrderStatus]), required=True)
@click.option('--user-id', type=int, help='Acting user ID')
@with_appcontext
def set_status_cli(tenant_id, order_id, status, user_id):
    """Move an order to any status reachable from its current one."""
    _run_transition(order_service.update_order_status, order_id, tenant_id, user_id, status)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(tenants_group)
    app.cli.add_command(warehouses_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(orders_group)
