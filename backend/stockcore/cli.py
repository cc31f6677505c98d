# Overview: Flask CLI command groups for bootstrap, stock inspection, and repair.

# backend/stockcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system create-tenant --name "Acme Corp" [--code ACME]
#   Create a new tenant.
#
# Stock inspection/repair:
# - python -m flask stock reconcile --tenant-id 1 [--product-id 7]
#   Compare each product's quantity with the sum of its ledger movements.
# - python -m flask stock low --tenant-id 1
#   List products that are low on stock or out of stock.
#
# Customers:
# - python -m flask customers recalculate --tenant-id 1
#   Rebuild every customer's lifetime purchase total from orders.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Tenant
from .models.inventory import STOCK_STATUS_LOW_STOCK, STOCK_STATUS_OUT_OF_STOCK
from .services import customer_service, stock_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables from the current models."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('create-tenant')
@click.option('--name', required=True, help='Tenant name')
@click.option('--code', default=None, help='Short code (unique)')
@with_appcontext
def create_tenant_cli(name, code):
    """Create a new tenant."""
    if code:
        existing = db.session.query(Tenant).filter_by(code=code).first()
        if existing:
            click.echo(f"FAIL Tenant with code '{code}' already exists")
            return

    tenant = Tenant(name=name, code=code, is_active=True)
    db.session.add(tenant)
    db.session.commit()
    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")


@click.group('stock')
def stock_group():
    """Stock record inspection and reconciliation."""


@stock_group.command('reconcile')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--product-id', type=int, default=None, help='Limit to one product')
@with_appcontext
def reconcile_cli(tenant_id, product_id):
    """
    Check quantity against the movement ledger.

    Exits with status 1 if any product's quantity differs from its ledger
    balance or its stored status is stale.
    """
    report = stock_service.reconcile_stock(tenant_id, product_id)
    if not report:
        click.echo("No products found")
        return

    mismatched = 0
    for row in report:
        ok = row["difference"] == 0 and row["status_consistent"]
        if not ok:
            mismatched += 1
        click.echo(
            f"{'PASS' if ok else 'FAIL'} #{row['product_id']} {row['name']}: "
            f"quantity={row['quantity']} ledger={row['ledger_quantity']} "
            f"difference={row['difference']} status={row['stock_status']}"
        )

    if mismatched:
        click.echo(f"FAIL {mismatched} of {len(report)} product(s) out of sync")
        raise SystemExit(1)
    click.echo(f"PASS {len(report)} product(s) reconcile with the ledger")


@stock_group.command('low')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@with_appcontext
def low_stock_cli(tenant_id):
    """List low-stock and out-of-stock products."""
    products = (
        stock_service.list_stock_records(tenant_id, status=STOCK_STATUS_OUT_OF_STOCK)
        + stock_service.list_stock_records(tenant_id, status=STOCK_STATUS_LOW_STOCK)
    )
    if not products:
        click.echo("All products in stock")
        return
    for product in products:
        minimum = product.minimum_stock_quantity if product.minimum_stock_quantity is not None else "-"
        click.echo(f"{product.stock_status:<13} #{product.id} {product.name} quantity={product.quantity} minimum={minimum}")


@click.group('customers')
def customers_group():
    """Customer aggregate maintenance."""


@customers_group.command('recalculate')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@with_appcontext
def recalculate_customers_cli(tenant_id):
    """Rebuild total purchases for every customer in the tenant."""
    count = customer_service.recalculate_all_customer_totals(tenant_id)
    click.echo(f"PASS Recalculated {count} customer total(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(customers_group)
