# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/repairflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to repairflow:create_app (PowerShell: $env:FLASK_APP="repairflow:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--shop "Main Shop"] [--code MAIN]
#   Idempotent bootstrap: creates tables and a default shop.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Shops:
# - python -m flask shops list
#
# Billing follow-up:
# - python -m flask invoices overdue [--shop-id 1]
#   List invoices with money owed past their due date.
#
# Warranty follow-up:
# - python -m flask warranty expiring [--shop-id 1] [--days 7]
#   List repairs whose warranty window closes within N days.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Shop
from .services import invoice_service, warranty_service
from .services.shop_service import create_shop
from .validation import cents_to_str
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--shop', 'shop_name', default='Main Shop', help='Default shop name')
@click.option('--code', 'shop_code', default='MAIN', help='Default shop code')
@with_appcontext
def init_system(shop_name, shop_code):
    """
    Initialize the database schema and a default shop.

    Safe to run repeatedly: existing tables and shops are left alone.
    """
    click.echo("START Initializing RepairFlow...")
    db.create_all()
    click.echo("PASS Schema ready")

    shop = db.session.query(Shop).filter_by(code=shop_code).first()
    if not shop:
        shop = create_shop(shop_name, shop_code)
        click.echo(f"PASS Created default shop: {shop.name} (ID: {shop.id}, Code: {shop.code})")
    else:
        click.echo(f"PASS Using existing shop: {shop.name} (ID: {shop.id})")


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
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete. Run: python -m flask system init")


# =============================================================================
# SHOPS
# =============================================================================

@click.group('shops')
def shops_group():
    """Shop inspection commands."""


@shops_group.command('list')
@with_appcontext
def list_shops():
    """List all shops."""
    shops = db.session.query(Shop).order_by(Shop.id).all()
    if not shops:
        click.echo("No shops found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<12} {'Tax rate':<10} {'Active'}")
    click.echo("="*70)
    for shop in shops:
        rate = str(shop.default_tax_rate) if shop.default_tax_rate is not None else "default"
        click.echo(f"{shop.id:<5} {shop.name:<30} {shop.code or '-':<12} {rate:<10} {'Yes' if shop.is_active else 'No'}")
    click.echo("="*70 + "\n")


# =============================================================================
# INVOICES
# =============================================================================

@click.group('invoices')
def invoices_group():
    """Invoice follow-up commands."""


@invoices_group.command('overdue')
@click.option('--shop-id', type=int, default=None, help='Limit to one shop')
@with_appcontext
def overdue_invoices(shop_id):
    """List overdue invoices, oldest due date first."""
    now = utcnow()
    invoices = invoice_service.list_overdue_invoices(shop_id, now=now)
    if not invoices:
        click.echo("No overdue invoices.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'Invoice':<12} {'Ticket':<12} {'Customer':<10} {'Due date':<12} {'Days late':<10} {'Amount due'}")
    click.echo("="*80)
    for invoice in invoices:
        days_late = (now - invoice.due_date).days
        click.echo(
            f"{invoice.invoice_number:<12} {invoice.ticket_number or '-':<12} {invoice.customer_id:<10} "
            f"{invoice.due_date.date().isoformat():<12} {days_late:<10} {cents_to_str(invoice.amount_due_cents)}"
        )
    click.echo("="*80)
    total = sum(i.amount_due_cents for i in invoices)
    click.echo(f"{len(invoices)} overdue invoice(s), {cents_to_str(total)} outstanding\n")


# =============================================================================
# WARRANTY
# =============================================================================

@click.group('warranty')
def warranty_group():
    """Warranty follow-up commands."""


@warranty_group.command('expiring')
@click.option('--shop-id', type=int, default=None, help='Limit to one shop')
@click.option('--days', type=int, default=7, show_default=True, help='Window closes within N days')
@with_appcontext
def expiring_warranties(shop_id, days):
    """List repairs whose warranty expires soon."""
    results = warranty_service.expiring_warranties(shop_id, within_days=days)
    if not results:
        click.echo(f"No warranties expiring in the next {days} days.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'Ticket':<12} {'Repair type':<16} {'Customer':<10} {'Expires':<12} {'Days left'}")
    click.echo("="*70)
    for status in results:
        click.echo(
            f"{status['ticket_number']:<12} {status['repair_type'] or '-':<16} {status['customer_id']:<10} "
            f"{status['expires_at'].date().isoformat():<12} {status['days_remaining']}"
        )
    click.echo("="*70 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(shops_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(warranty_group)
