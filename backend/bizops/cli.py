# Overview: Flask CLI command groups for bootstrap, tax tables, accounting reconciliation and inventory sync.

# backend/bizops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--name "Acme Ltd"] [--code ACME] [--country UG]
#   Idempotent bootstrap: creates tables, a business, its ledger accounts and the default tax rates.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tax tables:
# - python -m flask tax seed-rates --country UG
#   Insert the default rate table for a country (skips rows already present).
# - python -m flask tax categories [--country UG]
#   List tax categories and the rates mapped to them.
#
# Accounting:
# - python -m flask accounting reconcile [--business-id 1] [--include-pending]
#   Re-run ledger posting for sales whose accounting_error is set.
#
# Inventory:
# - python -m flask inventory sync-product --business-id 1 --product-id 7
#   Create (or link) the inventory record for a catalog product.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Business
from .errors import SalesEngineError
from .services import accounting_bridge, inventory_service, ledger_service, tax_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--name', 'business_name', default='Default Business', help='Business name')
@click.option('--code', 'business_code', default='DEFAULT', help='Business code')
@click.option('--country', 'country_code', default=None, help='Tax jurisdiction (defaults to DEFAULT_COUNTRY_CODE)')
@with_appcontext
def init_system(business_name, business_code, country_code):
    """
    Initialize a business ready to record sales.

    Creates (when missing):
    - All tables
    - The business identified by --code
    - Ledger accounts 1110, 1200, 4100, 4200 for the business
    - Default tax rates for the business's country
    """
    click.echo("START Initializing bizops...")
    db.create_all()

    country_code = (country_code or current_app.config.get("DEFAULT_COUNTRY_CODE", "UG")).upper()

    business = db.session.query(Business).filter_by(code=business_code).first()
    if not business:
        business = Business(name=business_name, code=business_code, country_code=country_code, is_active=True)
        db.session.add(business)
        db.session.commit()
        click.echo(f"PASS Created business: {business.name} (ID: {business.id}, Code: {business.code})")
    else:
        click.echo(f"PASS Using existing business: {business.name} (ID: {business.id})")

    created_accounts = ledger_service.ensure_default_accounts(db.session, business.id)
    db.session.commit()
    click.echo(f"PASS Ledger accounts created: {created_accounts}")

    jurisdiction = business.country_code or country_code
    try:
        created_rates = tax_service.seed_default_rates(db.session, jurisdiction)
        db.session.commit()
        click.echo(f"PASS Tax rates created for {jurisdiction}: {created_rates}")
    except SalesEngineError as e:
        db.session.rollback()
        click.echo(f"WARN {e.message}; configure rates for {jurisdiction} manually")

    click.echo("DONE System initialized.")


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


@click.group('tax')
def tax_group():
    """Tax rate table commands."""


@tax_group.command('seed-rates')
@click.option('--country', 'country_code', required=True, help='Country code, e.g. UG')
@with_appcontext
def seed_rates(country_code):
    """Insert the default rate table for a country."""
    try:
        created = tax_service.seed_default_rates(db.session, country_code.upper())
    except SalesEngineError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    db.session.commit()
    click.echo(f"PASS Created {created} tax rates for {country_code.upper()}")


@tax_group.command('categories')
@click.option('--country', 'country_code', default=None, help='Country code (defaults to DEFAULT_COUNTRY_CODE)')
@with_appcontext
def list_categories(country_code):
    """List tax categories with their mapped rates."""
    country_code = (country_code or current_app.config.get("DEFAULT_COUNTRY_CODE", "UG")).upper()
    for category in tax_service.get_tax_categories(db.session, country_code):
        click.echo(f"{category['category_code']:<20} {category['category_name']}")
        for mapping in category["tax_mappings"]:
            who = mapping["customer_type"] or "any"
            click.echo(
                f"    {mapping['tax_code']:<14} {mapping['rate']:>9}%  "
                f"customer={who:<10} from {mapping['effective_from']}"
            )


@click.group('accounting')
def accounting_group():
    """Ledger posting reconciliation commands."""


@accounting_group.command('reconcile')
@click.option('--business-id', type=int, default=None, help='Limit to one business')
@click.option('--include-pending', is_flag=True, help='Also post completed sales never attempted')
@with_appcontext
def reconcile(business_id, include_pending):
    """
    Re-run ledger posting for sales whose posting failed.

    Completed sales get their sale entry; voided/cancelled sales their
    reversal. Sales that fail again keep their accounting_error.
    """
    summary = accounting_bridge.reconcile_failed(business_id, include_pending=include_pending)
    click.echo(
        f"PASS Attempted {summary['attempted']}: "
        f"{summary['processed']} processed, {summary['failed']} failed"
    )
    if summary["sale_ids_failed"]:
        click.echo(f"WARN Still failing: {', '.join(str(i) for i in summary['sale_ids_failed'])}")


@click.group('inventory')
def inventory_group():
    """Inventory record commands."""


@inventory_group.command('sync-product')
@click.option('--business-id', type=int, required=True, help='Business ID')
@click.option('--product-id', type=int, required=True, help='Product ID')
@with_appcontext
def sync_product(business_id, product_id):
    """Create or link the inventory record for a catalog product."""
    try:
        item = inventory_service.sync_product_to_inventory(db.session, business_id, product_id)
    except SalesEngineError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    db.session.commit()
    click.echo(f"PASS Product {product_id} -> inventory item {item.id} (SKU {item.sku})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tax_group)
    app.cli.add_command(accounting_group)
    app.cli.add_command(inventory_group)
