# Overview: Flask CLI command groups for bootstrap, inspection, and document operations.

# backend/kardex/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask db upgrade
#   Apply Alembic revisions (Flask-Migrate).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Demo data:
# - python -m flask seed demo
#   Warehouse, IVA 19%, purchase/sale document types and two products.
#
# Documents:
# - python -m flask documents show 10
#   Print a document with its lines.
# - python -m flask documents finalize 10 --user-id 1 [--clamp] [--force-negative]
#   Post a draft to stock and kardex.
# - python -m flask documents void 10 --user-id 1 --reason "wrong supplier" [--confirm-zero-stock]
#   Void a finalized document through a reversal document.
#
# Counters / kardex:
# - python -m flask counters show
#   List named counters and their last value.
# - python -m flask kardex history 5 [--limit 20]
#   Latest movements of a product.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import (
    ApplicationSettings,
    Counter,
    DocumentType,
    Product,
    ProductTax,
    StockDirection,
    Tax,
    Warehouse,
)
from .services import document_service, finalize_service, kardex_service, void_service
from .services.schema_compat import reset_column_cache


@click.group('system')
def system_group():
    """Schema bootstrap and repair commands."""


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
    reset_column_cache()
    click.echo("OK Database reset complete")


# =============================================================================
# SEED
# =============================================================================

@click.group('seed')
def seed_group():
    """Demo / development data."""


@seed_group.command('demo')
@with_appcontext
def seed_demo():
    """Idempotently create a minimal catalog to try the document flow."""
    warehouse = db.session.query(Warehouse).filter_by(name="Bodega Principal").first()
    if warehouse is None:
        warehouse = Warehouse(name="Bodega Principal")
        db.session.add(warehouse)
        db.session.flush()

    iva = db.session.query(Tax).filter_by(code="IVA19").first()
    if iva is None:
        iva = Tax(name="IVA 19%", code="IVA19", rate=19, is_fixed=False, is_enabled=True)
        db.session.add(iva)
        db.session.flush()

    types = [
        ("Compra", "100", StockDirection.IN),
        ("Venta", "200", StockDirection.OUT),
        ("Cotización", "300", StockDirection.NONE),
    ]
    for name, code, direction in types:
        exists = db.session.query(DocumentType).filter_by(code=code, warehouse_id=warehouse.id).first()
        if exists is None:
            db.session.add(DocumentType(name=name, code=code, warehouse_id=warehouse.id, stock_direction=int(direction)))

    products = [
        ("Café 500g", "CAF-500", "UND", 23800, 15000, False),
        ("Servicio de instalación", "SRV-INST", "SRV", 50000, 0, True),
    ]
    for name, code, unit, price, cost, is_service in products:
        product = db.session.query(Product).filter_by(code=code).first()
        if product is None:
            product = Product(
                name=name,
                code=code,
                measurement_unit=unit,
                price=price,
                cost=cost,
                last_purchase_price=cost,
                is_service=is_service,
            )
            db.session.add(product)
            db.session.flush()
            db.session.add(ProductTax(product_id=product.id, tax_id=iva.id))

    if db.session.get(ApplicationSettings, 1) is None:
        db.session.add(ApplicationSettings(company_id=1, currency_symbol="$", tax_percentage=19))

    db.session.commit()
    click.echo(f"OK Demo data ready (warehouse_id={warehouse.id})")


# =============================================================================
# DOCUMENTS
# =============================================================================

@click.group('documents')
def documents_group():
    """Inspect, finalize and void documents."""


@documents_group.command('show')
@click.argument('document_id', type=int)
@with_appcontext
def show_document(document_id):
    """Print a document with its lines as JSON."""
    document = document_service.get_document(document_id)
    if document is None:
        raise click.ClickException(f"Document {document_id} not found")
    click.echo(json.dumps(document, indent=2, ensure_ascii=False))


@documents_group.command('finalize')
@click.argument('document_id', type=int)
@click.option('--user-id', type=int, default=None, help='User recorded on kardex history rows')
@click.option('--clamp', is_flag=True, help='Post only what is on hand for outbound lines')
@click.option('--force-negative', is_flag=True, help='Allow negative stock regardless of settings')
@with_appcontext
def finalize_document_cmd(document_id, user_id, clamp, force_negative):
    """Post a draft document to stock and kardex."""
    result = finalize_service.finalize_document(
        document_id,
        user_id,
        clamp_negative_stock_to_zero=clamp,
        force_allow_negative_stock=force_negative,
    )
    if not result.success:
        raise click.ClickException(result.error or "Finalize failed")
    click.echo(f"OK Document {document_id} finalized")


@documents_group.command('void')
@click.argument('document_id', type=int)
@click.option('--user-id', type=int, default=1, show_default=True)
@click.option('--reason', default=None)
@click.option('--confirm-zero-stock', is_flag=True, help='Clamp the reversal at zero stock when short')
@with_appcontext
def void_document_cmd(document_id, user_id, reason, confirm_zero_stock):
    """Void a finalized document through a reversal document."""
    result = void_service.void_document(
        document_id,
        user_id,
        reason=reason,
        confirm_proceed_with_zero_stock=confirm_zero_stock,
    )
    if result.needs_confirmation:
        click.echo("WARN Reversal would leave negative stock for:")
        for product in result.affected_products:
            click.echo(
                f"  - {product['name']} ({product['code'] or product['product_id']}): "
                f"stock={product['stock']} required={product['required']}"
            )
        raise click.ClickException("Re-run with --confirm-zero-stock to clamp at 0")
    if not result.success:
        raise click.ClickException(result.error or "Void failed")
    click.echo(
        f"OK Document {document_id} voided by {result.reversal_document_number or 'note stamp'}"
    )


# =============================================================================
# COUNTERS / KARDEX
# =============================================================================

@click.group('counters')
def counters_group():
    """Named sequence counters."""


@counters_group.command('show')
@with_appcontext
def show_counters():
    counters = db.session.query(Counter).order_by(Counter.name).all()
    if not counters:
        click.echo("No counters allocated yet")
        return
    for counter in counters:
        click.echo(f"{counter.name:<20} {counter.value}")


@click.group('kardex')
def kardex_group():
    """Kardex inspection."""


@kardex_group.command('history')
@click.argument('product_id', type=int)
@click.option('--limit', type=int, default=20, show_default=True)
@click.option('--warehouse-id', type=int, default=None)
@with_appcontext
def kardex_history(product_id, limit, warehouse_id):
    entries = kardex_service.get_product_kardex_history(product_id, limit=limit, warehouse_id=warehouse_id)
    if not entries:
        click.echo(f"No kardex movements for product {product_id}")
        return
    for entry in entries:
        click.echo(
            f"{entry.date:%Y-%m-%d %H:%M} {entry.type:<8} qty={entry.quantity} "
            f"{entry.previous_balance} -> {entry.balance} doc={entry.document_number or '-'}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(seed_group)
    app.cli.add_command(documents_group)
    app.cli.add_command(counters_group)
    app.cli.add_command(kardex_group)
