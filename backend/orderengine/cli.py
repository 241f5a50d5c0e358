# Overview: Flask CLI command groups for bootstrap, catalog setup, stock correction and review.

# backend/orderengine/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent: creates tables and the order number sequence.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog setup:
# - python -m flask catalog add-product --sku ESP-01 --name "Espresso" --price-cents 250 --stock 40
# - python -m flask catalog add-variant --product-id 1 --name "Large" --modifier-cents 50 --stock 20
# - python -m flask catalog add-table --label "T1"
#
# Stock correction (restock after a cancellation, recount):
# - python -m flask stock adjust --product-id 1 [--variant-id 2] --delta 3 --note "cancelled order 41"
#
# Review queue:
# - python -m flask orders review
#   List orders flagged needs_review by the commit pipeline.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import OrderSequence
from .services import catalog_service, order_service, stock_service
from .services.catalog_service import CatalogError
from .services.sequence_service import ORDER_SEQUENCE
from .services.stock_service import StockLedgerError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create missing tables and the order number sequence."""
    click.echo("START Initializing order engine...")

    db.create_all()
    click.echo("PASS Tables ready")

    seq = db.session.query(OrderSequence).filter_by(name=ORDER_SEQUENCE).first()
    if not seq:
        db.session.add(OrderSequence(name=ORDER_SEQUENCE, next_number=1))
        db.session.commit()
        click.echo(f"PASS Created sequence '{ORDER_SEQUENCE}'")
    else:
        click.echo(f"PASS Using existing sequence '{ORDER_SEQUENCE}' (next: {seq.next_number})")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('catalog')
def catalog_group():
    """Minimal catalog setup (products, variants, tables)."""


@catalog_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=int, required=True, help='Base price in cents')
@click.option('--stock', type=int, default=0, show_default=True)
@with_appcontext
def add_product(sku, name, price_cents, stock):
    try:
        product = catalog_service.create_product(sku, name, price_cents, stock)
    except (CatalogError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created product {product.id}: {product.name} ({product.base_price_cents} cents, stock {product.stock_quantity})")


@catalog_group.command('add-variant')
@click.option('--product-id', type=int, required=True)
@click.option('--name', required=True)
@click.option('--modifier-cents', type=int, default=0, show_default=True, help='Added to the base price')
@click.option('--stock', type=int, default=0, show_default=True)
@with_appcontext
def add_variant(product_id, name, modifier_cents, stock):
    """Add a variant. The product is then counted by its variants only."""
    try:
        variant = catalog_service.create_variant(product_id, name, modifier_cents, stock)
    except CatalogError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created variant {variant.id}: {name} on product {product_id} (stock {variant.stock_quantity})")


@catalog_group.command('add-table')
@click.option('--label', required=True)
@with_appcontext
def add_table(label):
    try:
        table = catalog_service.create_table(label)
    except CatalogError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created table {table.id}: {table.label}")


@click.group('stock')
def stock_group():
    """Manual stock corrections."""


@stock_group.command('adjust')
@click.option('--product-id', type=int, required=True)
@click.option('--variant-id', type=int, default=None)
@click.option('--delta', type=int, required=True, help='Positive to restock, negative to write off')
@click.option('--note', default=None)
@click.option('--actor', default='cli', show_default=True, help='Recorded in the log line')
@with_appcontext
def adjust_stock(product_id, variant_id, delta, note, actor):
    key = stock_service.resolve_stock_unit(product_id, variant_id)
    if key is None:
        raise click.ClickException("Stock unit not found (products with variants need --variant-id)")
    try:
        new_quantity = stock_service.adjust(key, delta, actor_id=actor, note=note)
    except StockLedgerError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS {key.kind} {key.unit_id} stock is now {new_quantity}")


@click.group('orders')
def orders_group():
    """Order inspection."""


@orders_group.command('review')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def review_orders(limit):
    """List orders flagged for manual reconciliation."""
    orders, total = order_service.list_orders(needs_review=True, limit=limit)
    if not orders:
        click.echo("PASS No orders need review")
        return

    click.echo(f"WARN {total} order(s) need review")
    for order in orders:
        failed = [line for line in order.lines if line.stock_outcome != stock_service.DECREMENT_SUCCESS]
        click.echo(
            f"  #{order.order_number} (id {order.id}) {order.status}/{order.payment_status} "
            f"total={order.total_cents} note={order.review_note!r}"
        )
        for line in failed:
            click.echo(
                f"    line {line.id}: product {line.product_id} variant {line.variant_id} "
                f"x{line.quantity} stock_outcome={line.stock_outcome}"
            )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(orders_group)
