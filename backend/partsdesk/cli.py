# Overview: Flask CLI command groups for bootstrap, catalog seeding, and reservation maintenance.

# backend/partsdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to the factory (PowerShell: $env:FLASK_APP="partsdesk:create_app").
#   wsgi.py is the server entry point and also starts the background sweeper.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables (if missing) and the default settings row.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog seeding/inspection:
# - python -m flask catalog add-product --sku BRK-001 --name "Brake pad" --stock 10 --retail 2500 --wholesale 2000
#   Create a product; initial stock is recorded as an IN ledger entry.
# - python -m flask catalog list [--all]
#   List products with stock levels (inactive ones only with --all).
#
# Reservations:
# - python -m flask reservations sweep
#   Expire overdue reservations now and report the ones about to expire.
# - python -m flask reservations run-scheduler --interval 300
#   Run the expiration sweep in the foreground every N seconds (Ctrl+C to stop).
#
# Settings:
# - python -m flask settings show
#   Print the reservation settings currently in effect.

import time

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .identity import ROLE_ADMIN, Actor
from .models import Product
from .services import ledger_service, settings_service
from .services.expiration_service import sweep_reservations
from .validation import DomainError, enforce_rules_product


# Ledger entries written from the CLI are attributed to this operator id.
CLI_ACTOR = Actor(user_id="cli", role=ROLE_ADMIN)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the database schema and the default settings row.

    Safe to re-run: existing tables and settings are left untouched.
    """
    click.echo("START Initializing partsdesk...")

    db.create_all()
    click.echo("PASS Schema ready")

    row = settings_service.get_or_default()
    click.echo(
        f"PASS Settings: temp={row.temp_reservation_minutes}min "
        f"deposit={row.deposit_percentage}% "
        f"deposit_hold={row.deposit_reservation_hours}h "
        f"pending_verification={row.pending_verification_hours}h"
    )

    click.echo("\nDONE partsdesk initialized")


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


@click.group('catalog')
def catalog_group():
    """Catalog seeding and inspection."""


@catalog_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--stock', default=0, show_default=True, type=int, help='Initial stock (ledgered as IN)')
@click.option('--min-stock', default=1, show_default=True, type=int)
@click.option('--retail', 'retail_price_cents', required=True, type=int, help='Retail price in cents')
@click.option('--wholesale', 'wholesale_price_cents', type=int, default=None, help='Wholesale price in cents (default: retail)')
@with_appcontext
def add_product(sku, name, stock, min_stock, retail_price_cents, wholesale_price_cents):
    """Create a product and ledger its opening stock."""
    if wholesale_price_cents is None:
        wholesale_price_cents = retail_price_cents

    try:
        enforce_rules_product({
            "stock": stock,
            "min_stock": min_stock,
            "retail_price_cents": retail_price_cents,
            "wholesale_price_cents": wholesale_price_cents,
        })
    except DomainError as e:
        raise click.ClickException(str(e))

    if db.session.query(Product).filter_by(sku=sku).first():
        raise click.ClickException(f"SKU {sku} already exists")

    product = Product(
        sku=sku,
        name=name,
        stock=0,
        min_stock=min_stock,
        retail_price_cents=retail_price_cents,
        wholesale_price_cents=wholesale_price_cents,
        is_active=True,
    )
    db.session.add(product)
    db.session.commit()

    if stock > 0:
        ledger_service.record_manual_movement(
            CLI_ACTOR,
            product_id=product.id,
            movement_type="IN",
            quantity=stock,
            reason="Opening stock",
        )

    product = db.session.get(Product, product.id)
    click.echo(f"PASS Created product {product.sku} (ID: {product.id}) stock={product.stock}")


@catalog_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include inactive products')
@with_appcontext
def list_products(show_all):
    """List products with current stock."""
    q = db.session.query(Product)
    if not show_all:
        q = q.filter(Product.is_active.is_(True))
    products = q.order_by(Product.name.asc()).all()

    if not products:
        click.echo("No products found.")
        return

    click.echo(f"\n{'ID':<6} {'SKU':<16} {'Name':<32} {'Stock':>6} {'Min':>5} {'Retail':>10} {'Active':<6}")
    click.echo("-" * 86)
    for p in products:
        low = " LOW" if p.stock <= p.min_stock else ""
        click.echo(
            f"{p.id:<6} {p.sku:<16} {p.name[:32]:<32} {p.stock:>6} {p.min_stock:>5} "
            f"{p.retail_price_cents / 100:>10.2f} {'yes' if p.is_active else 'no':<6}{low}"
        )
    click.echo(f"\nTotal: {len(products)} product(s)")


@click.group('reservations')
def reservations_group():
    """Reservation maintenance."""


def _echo_sweep(result) -> None:
    data = result.to_dict()
    click.echo(f"Sweep at {data['timestamp']}")
    click.echo(f"  expired:       {data['expired']['count']}")
    for item in data['expired']['reservations']:
        click.echo(f"    - {item['id']} ({item['quantity']}x {item['product_name']})")
    click.echo(f"  expiring soon: {data['expiring_soon']['count']}")
    for item in data['expiring_soon']['reservations']:
        click.echo(f"    - {item['id']} ({item['minutes_left']} min left)")
    if data['failed']['count']:
        click.echo(f"  FAIL failed:   {data['failed']['count']}")
        for item in data['failed']['reservations']:
            click.echo(f"    - {item['id']}: {item['error']}")


@reservations_group.command('sweep')
@with_appcontext
def sweep_command():
    """Expire overdue reservations and return their stock."""
    _echo_sweep(sweep_reservations())


@reservations_group.command('run-scheduler')
@click.option('--interval', type=int, default=None, help='Seconds between sweeps (default: RESERVATION_SWEEP_INTERVAL_SECONDS)')
@with_appcontext
def run_scheduler(interval):
    """Run the expiration sweeper in the foreground."""
    from .scheduler import ExpirationScheduler

    interval = interval or current_app.config["RESERVATION_SWEEP_INTERVAL_SECONDS"]
    app = current_app._get_current_object()
    scheduler = ExpirationScheduler(app, interval)

    click.echo(f"START Sweeping every {interval}s (Ctrl+C to stop)")
    scheduler.start()
    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("\nSTOP Stopping sweeper...")
    finally:
        scheduler.stop()


@click.group('settings')
def settings_group():
    """Reservation settings."""


@settings_group.command('show')
@with_appcontext
def show_settings():
    """Print the settings in effect."""
    row = settings_service.get_or_default()
    for key, value in row.to_dict().items():
        click.echo(f"{key:<28} {value}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(reservations_group)
    app.cli.add_command(settings_group)
