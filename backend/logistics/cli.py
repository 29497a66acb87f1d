# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/logistics/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the cashbox singleton.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Cashbox inspection:
# - python -m flask cashbox show
#   Print balances per account and the USD equivalent.
# - python -m flask cashbox set-rate 89500
#   Record a new LBP per USD exchange rate.
#
# Order maintenance:
# - python -m flask orders recompute-totals
#   Recompute computed_total_* for every order.
# - python -m flask orders archive-eligible
#   Move completed, paid, client-cashed orders to history.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import cashbox_service, order_service
from .services.cashbox_service import CashboxError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create tables and the cashbox singleton (safe to re-run)."""
    db.create_all()
    cashbox_service.ensure_cashbox()
    db.session.commit()
    click.echo("OK  Tables created, cashbox ready")


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
    cashbox_service.ensure_cashbox()
    db.session.commit()

    click.echo("OK  Database reset complete")


@click.group('cashbox')
def cashbox_group():
    """Cashbox inspection commands."""


@cashbox_group.command('show')
@with_appcontext
def show_cashbox():
    summary = cashbox_service.get_balance_summary()
    click.echo(f"Total:  USD {summary['balance_usd']:.2f}  LBP {summary['balance_lbp']:,}")
    click.echo(f"Cash:   USD {summary['cash_balance_usd']:.2f}  LBP {summary['cash_balance_lbp']:,}")
    click.echo(f"Wish:   USD {summary['wish_balance_usd']:.2f}  LBP {summary['wish_balance_lbp']:,}")
    click.echo(f"Rate:   {summary['lbp_per_usd']:,} LBP/USD")
    click.echo(f"Equivalent total: USD {summary['equivalent_total_usd']:.2f}")


@cashbox_group.command('set-rate')
@click.argument('lbp_per_usd', type=int)
@with_appcontext
def set_rate(lbp_per_usd):
    """Record a new exchange rate."""
    try:
        rate = cashbox_service.set_exchange_rate(lbp_per_usd)
    except CashboxError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"OK  Rate set to {rate.lbp_per_usd:,} LBP/USD")


@click.group('orders')
def orders_group():
    """Order maintenance commands."""


@orders_group.command('recompute-totals')
@with_appcontext
def recompute_totals():
    changed = order_service.recompute_computed_totals()
    click.echo(f"OK  {changed} order(s) updated")


@orders_group.command('archive-eligible')
@with_appcontext
def archive_eligible():
    archived = order_service.archive_eligible_orders()
    click.echo(f"OK  {archived} order(s) moved to history")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(cashbox_group)
    app.cli.add_command(orders_group)
