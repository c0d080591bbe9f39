# Overview: Flask CLI command group for bootstrap and inspection.

# backend/tradeledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask ledger <command> [options]
#
# - python -m flask ledger init-db
#   Create every table that does not exist yet (idempotent).
# - python -m flask ledger reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask ledger seed-demo
#   Main warehouse, two products, one customer and one supplier.
# - python -m flask ledger low-stock
#   Products at or below their alert threshold.
#
# Schema migrations go through Flask-Migrate: python -m flask db upgrade

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Party, Product, Warehouse
from .models.parties import PARTY_CUSTOMER, PARTY_SUPPLIER
from .services import party_service, products_service, stock_service


@click.group('ledger')
def ledger_group():
    """Trade ledger bootstrap and inspection commands."""


@ledger_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    from . import models  # noqa: F401
    db.create_all()
    click.echo("OK Database schema created")


@ledger_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("BUILD  Creating all tables...")
    db.create_all()
    click.echo("OK Database reset complete")


@ledger_group.command('seed-demo')
@click.option('--actor', default='cli', help='Actor id stored on created records')
@with_appcontext
def seed_demo(actor):
    """
    Idempotent demo data: skips anything whose code/SKU/name already exists.
    """
    warehouse = db.session.query(Warehouse).filter_by(code="MAIN").first()
    if warehouse is None:
        warehouse = products_service.create_warehouse(code="MAIN", name="Main warehouse", is_main=True)
        click.echo(f"OK Warehouse {warehouse.code} (id={warehouse.id})")

    demo_products = [
        {"sku": "RICE-25", "name": "Rice 25kg", "cost_cents": 1_200_000, "price_cents": 1_500_000, "min_stock_alert": 5},
        {"sku": "OIL-5L", "name": "Cooking oil 5L", "cost_cents": 450_000, "price_cents": 600_000, "min_stock_alert": 10},
    ]
    for data in demo_products:
        product = db.session.query(Product).filter_by(sku=data["sku"]).first()
        if product is None:
            product = products_service.create_product(patch=data)
            stock_service.adjust_stock(
                product_id=product.id,
                warehouse_id=warehouse.id,
                direction=stock_service.ADJUST_ADDITION,
                quantity=20,
                reason="Demo opening stock",
                actor_id=actor,
            )
            click.echo(f"OK Product {data['sku']} with 20 units")

    for party_type, name in ((PARTY_CUSTOMER, "Demo customer"), (PARTY_SUPPLIER, "Demo supplier")):
        if db.session.query(Party).filter_by(name=name).first() is None:
            party = party_service.create_party(party_type=party_type, name=name)
            click.echo(f"OK {party_type.title()} {name} (id={party.id})")

    click.echo("DONE Demo data ready")


@ledger_group.command('low-stock')
@with_appcontext
def low_stock():
    """List products whose total quantity is at or below min_stock_alert."""
    items = stock_service.list_low_stock()
    if not items:
        click.echo("No products below their alert threshold.")
        return
    click.echo(f"{'SKU':<16} {'Name':<32} {'Qty':>6} {'Alert':>6}")
    click.echo("-" * 64)
    for item in items:
        click.echo(f"{item['sku']:<16} {item['name'][:32]:<32} {item['total_quantity']:>6} {item['min_stock_alert']:>6}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
