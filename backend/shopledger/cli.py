# Overview: Flask CLI command groups for bootstrap and stock inspection.

# backend/shopledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create demo departments, products, scents and a service.
#
# Stock inspection:
# - python -m flask stock show --department-id 1
#   List on-hand stock for a department (global scents included).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Department, Product, Service
from .models.inventory import TRACKING_ML, TRACKING_QUANTITY
from .services import products_service
from .services.sequence_service import resolve_or_create_master_scent_product


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables are in place")


@system_group.command('reset-db')
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

    click.echo("PASS Database reset complete")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Idempotent demo data: a general shop, a perfume counter, stock and scents."""
    departments = {}
    for name, kind in (("General Store", "general"), ("Perfume Bar", "perfume")):
        department = db.session.query(Department).filter_by(name=name).first()
        if department is None:
            department = products_service.create_department(name, kind)
            click.echo(f"PASS Created department: {name} (ID: {department.id})")
        departments[kind] = department

    general = departments["general"]
    perfume = departments["perfume"]

    demo_products = [
        {"department_id": general.id, "name": "Bottled Water", "tracking_type": TRACKING_QUANTITY,
         "stock": 48, "price_cents": 1000, "wholesale_price_cents": 800, "cost_price_cents": 600},
        {"department_id": general.id, "name": "Soap (6-pack)", "tracking_type": TRACKING_QUANTITY,
         "stock": 60, "quantity_per_unit": 6, "price_cents": 4500, "cost_price_cents": 3000},
        {"department_id": None, "name": "Oud", "tracking_type": TRACKING_ML,
         "stock_ml": 1000.0, "price_cents": 150, "cost_price_cents": 80},
        {"department_id": None, "name": "Vanilla", "tracking_type": TRACKING_ML,
         "stock_ml": 1000.0, "price_cents": 100, "cost_price_cents": 50},
        {"department_id": perfume.id, "name": "Rose", "tracking_type": TRACKING_ML,
         "stock_ml": 500.0, "price_cents": 120, "cost_price_cents": 60},
    ]
    for payload in demo_products:
        exists = (
            db.session.query(Product)
            .filter_by(name=payload["name"], department_id=payload["department_id"])
            .first()
        )
        if exists is None:
            product = products_service.create_product(payload)
            click.echo(f"PASS Created product: {product.name} (ID: {product.id})")

    if db.session.query(Service).filter_by(name="Bottle Refill", department_id=perfume.id).first() is None:
        products_service.create_service({
            "department_id": perfume.id,
            "name": "Bottle Refill",
            "price_cents": 2000,
            "material_cost_cents": 500,
        })
        click.echo("PASS Created service: Bottle Refill")

    master_id = resolve_or_create_master_scent_product()
    db.session.commit()
    click.echo(f"PASS Master scent product ready (ID: {master_id})")


@click.group('stock')
def stock_group():
    """Stock inspection commands."""


@stock_group.command('show')
@click.option('--department-id', type=int, required=True, help='Department ID')
@click.option('--no-global', is_flag=True, help='Hide shared scent rows')
@with_appcontext
def show_stock(department_id, no_global):
    """List on-hand stock for a department."""
    products = products_service.list_products(department_id, include_global=not no_global)
    if not products:
        click.echo("No products found")
        return

    click.echo(f"{'ID':<6} {'NAME':<30} {'SCOPE':<10} {'ON HAND':>14}")
    for product in products:
        level = product.level
        if product.tracking_type == TRACKING_ML:
            on_hand = f"{level.ml:.3f} ml"
        else:
            on_hand = f"{level.count} units"
        scope = "global" if product.scope.is_global else "dept"
        click.echo(f"{product.id:<6} {product.name[:30]:<30} {scope:<10} {on_hand:>14}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
