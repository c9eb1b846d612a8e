# Overview: Flask CLI command groups for schema bootstrap, container pool upkeep and receivables.

# backend/app/cli.py
# Usage (from backend/, FLASK_APP=app:create_app):
#   flask system init                         create missing tables (prefer `flask db upgrade`)
#   flask system reset-db --yes               drop and recreate every table, dev databases only
#   flask pool summary                        filled/empty/maintenance counts per product and capacity
#   flask pool consolidate                    merge duplicate pool rows, drop zero rows
#   flask receivables refresh-overdue [--as-of YYYY-MM-DD]
#                                             flag pending receivables past their due date

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import container_pool, settlement_ledger
from .time_utils import parse_iso_date


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all ledger tables that do not exist yet."""
    click.echo("START Initializing ledger schema...")
    db.create_all()
    click.echo("PASS Schema ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Do not ask before wiping')
@with_appcontext
def reset_db(yes):
    """Wipe the ledger: drop every table, then rebuild an empty schema."""
    if not yes:
        click.confirm("WARN Every sale, receivable and container record will be lost. Continue?", abort=True)

    db.drop_all()
    db.create_all()
    click.echo("PASS Ledger schema rebuilt (empty).")


@click.group('pool')
def pool_group():
    """Container pool inspection and repair."""


@pool_group.command('summary')
@with_appcontext
def pool_summary():
    """Print container counts per product/capacity."""
    rows = container_pool.pool_summary()
    if not rows:
        click.echo("No containers in the pool.")
        return

    click.echo(f"{'Product':<30} {'Capacity':<10} {'Filled':>8} {'Empty':>8} {'Maint.':>8} {'Total':>8}")
    click.echo("-" * 78)
    for row in rows:
        click.echo(
            f"{row['product_name']:<30} {row['capacity']:<10} "
            f"{row['filled']:>8} {row['empty']:>8} {row['maintenance']:>8} {row['total']:>8}"
        )


@pool_group.command('consolidate')
@with_appcontext
def pool_consolidate():
    """Merge pool rows sharing a key and drop zero-quantity rows."""
    removed = container_pool.consolidate()
    click.echo(f"PASS Consolidated container pool ({removed} rows removed).")


@click.group('receivables')
def receivables_group():
    """Receivable maintenance."""


@receivables_group.command('refresh-overdue')
@click.option('--as-of', 'as_of', default=None, help='Business date (YYYY-MM-DD), defaults to today')
@with_appcontext
def refresh_overdue(as_of):
    """Mark pending receivables past due as OVERDUE."""
    try:
        as_of_date = parse_iso_date(as_of) if as_of else None
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--as-of")

    updated = settlement_ledger.refresh_overdue(as_of_date)
    click.echo(f"PASS {updated} receivable(s) marked overdue.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(pool_group)
    app.cli.add_command(receivables_group)
