# Overview: Flask CLI command groups for bootstrap, store setup and the audit spool.

# backend/vpos/cli.py
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
#
# Stores and products:
# - python -m flask stores list
# - python -m flask stores create --name "Main St" --code MAIN --state NY
# - python -m flask stores add-product --store-id 1 --sku MARL-RED --name "Marlboro Red" --price-cents 1599 --on-hand 20 --age-restricted --special-tax tobacco
#
# Audit spool:
# - python -m flask audit pending
#   Number of audit entries waiting for redelivery.
# - python -m flask audit flush [--limit 500]
#   Redeliver spooled entries now (oldest first, stops at first failure).

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import PosError
from .extensions import db
from .models import Store
from .services import inventory_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema ready.")


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

    click.echo("PASS Database reset complete.")


# =============================================================================
# STORE SETUP COMMANDS
# =============================================================================

@click.group('stores')
def stores_group():
    """Store and product setup commands."""


@stores_group.command('list')
@with_appcontext
def list_stores():
    """List all stores."""
    stores = db.session.query(Store).order_by(Store.id).all()

    if not stores:
        click.echo("No stores found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<12} {'State':<7} {'Active'}")
    click.echo("="*70)
    for store in stores:
        active_str = "Yes" if store.is_active else "No"
        click.echo(f"{store.id:<5} {store.name:<30} {store.code or '-':<12} {store.state_code or '-':<7} {active_str}")
    click.echo("="*70 + "\n")


@stores_group.command('create')
@click.option('--name', required=True, help='Store name')
@click.option('--code', help='Store code (unique)')
@click.option('--state', 'state_code', help='Two-letter state code (tax jurisdiction)')
@click.option('--address', 'address_line1', help='Street address')
@click.option('--city', help='City')
@click.option('--zip', 'zip_code', help='ZIP code')
@click.option('--phone', help='Phone number')
@with_appcontext
def create_store_cli(name, code, state_code, address_line1, city, zip_code, phone):
    """Create a store."""
    if code and db.session.query(Store).filter_by(code=code).first():
        click.echo(f"FAIL Store with code '{code}' already exists")
        return

    store = Store(
        name=name,
        code=code,
        state_code=state_code.upper() if state_code else None,
        address_line1=address_line1,
        city=city,
        zip_code=zip_code,
        phone=phone,
    )
    db.session.add(store)
    db.session.commit()

    click.echo(f"PASS Created store: {store.name} (ID: {store.id}, State: {store.state_code or 'default'})")


@stores_group.command('add-product')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--sku', required=True, help='SKU (unique within store)')
@click.option('--name', required=True, help='Product name')
@click.option('--price-cents', type=int, required=True, help='Unit price in cents')
@click.option('--on-hand', type=int, default=0, show_default=True, help='Initial stock')
@click.option('--category', help='Category')
@click.option('--age-restricted', is_flag=True, help='Requires age verification')
@click.option('--special-tax', 'special_tax_category', help='Special tax category (tobacco, vape)')
@with_appcontext
def add_product_cli(store_id, sku, name, price_cents, on_hand, category, age_restricted, special_tax_category):
    """Add a product to a store."""
    try:
        product = inventory_service.create_product(
            db.session,
            store_id=store_id,
            sku=sku,
            name=name,
            price_cents=price_cents,
            on_hand=on_hand,
            category=category,
            age_restricted=age_restricted,
            special_tax_category=special_tax_category,
        )
    except PosError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS Created product: {product.name} (ID: {product.id}, SKU: {product.sku})")


# =============================================================================
# AUDIT SPOOL COMMANDS
# =============================================================================

@click.group('audit')
def audit_group():
    """Audit spool inspection and redelivery."""


@audit_group.command('pending')
@with_appcontext
def audit_pending():
    """Show how many audit entries are waiting for redelivery."""
    from . import get_audit_sink
    click.echo(f"Pending audit entries: {get_audit_sink().pending_count()}")


@audit_group.command('flush')
@click.option('--limit', type=int, default=500, show_default=True, help='Max entries to redeliver')
@with_appcontext
def audit_flush(limit):
    """Redeliver spooled audit entries now."""
    from . import get_audit_sink
    sink = get_audit_sink()
    delivered = sink.flush_pending(limit)
    remaining = sink.pending_count()
    click.echo(f"PASS Redelivered {delivered} entries; {remaining} still pending.")
    if remaining:
        current_app.logger.warning("Audit spool still holds %d entries after flush", remaining)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(audit_group)
