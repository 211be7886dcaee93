# Overview: Flask CLI command groups for schema setup, data reset, and ledger inspection.

# backend/liquorpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask system migrate
#   Apply pending schema migrations (also done at startup unless AUTO_MIGRATE=false).
# - python -m flask system migrations
#   List migrations and whether each has been applied.
# - python -m flask system wipe --yes
#   Factory reset: delete all ledger entries, transactions and products.
#
# Ledger:
# - python -m flask ledger verify [--upc 012345]
#   Check the before/after chain for every product (exit code 1 on violations).
# - python -m flask ledger on-hand 012345
#   Print the current balance for a UPC.
# - python -m flask ledger adjust 012345 purchase 24 --note "Case delivery" --user-id 1 --user-name "Kelly"
#   Journal one adjustment.
# - python -m flask ledger history 012345 [--limit 20]
#   Print recent entries for a UPC, newest first.

import click
from flask.cli import with_appcontext

from .extensions import db
from .migrations import MIGRATIONS, applied_versions, run_migrations
from .models import LedgerEntry, Product, Transaction, TransactionLine
from .services import ledger_service
from .services.ledger_service import Actor, AdjustmentFilters, AdjustmentOptions, LedgerError


@click.group('system')
def system_group():
    """Schema and data management commands."""


@system_group.command('migrate')
@with_appcontext
def migrate_cli():
    """Apply pending schema migrations."""
    applied = run_migrations(db.engine)
    if not applied:
        click.echo("Schema is up to date.")
        return
    for version in applied:
        click.echo(f"Applied migration {version}")


@system_group.command('migrations')
@with_appcontext
def list_migrations_cli():
    """List known migrations and their status."""
    done = applied_versions(db.engine)
    for migration in MIGRATIONS:
        status = "applied" if migration.version in done else "pending"
        click.echo(f"{migration.version}  {status:<8} {migration.description}")


@system_group.command('wipe')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def wipe_data(yes):
    """
    Factory reset.

    Removes every ledger entry, transaction line, transaction and product.
    This is the only operation that deletes ledger history.
    """
    if not yes:
        click.confirm("WARN This will DELETE all inventory history and products. Are you sure?", abort=True)

    # Bulk deletes bypass the ORM immutability guard on LedgerEntry
    counts = {
        "ledger entries": db.session.query(LedgerEntry).delete(synchronize_session=False),
        "transaction lines": db.session.query(TransactionLine).delete(synchronize_session=False),
        "transactions": db.session.query(Transaction).delete(synchronize_session=False),
        "products": db.session.query(Product).delete(synchronize_session=False),
    }
    db.session.commit()

    for label, count in counts.items():
        click.echo(f"Deleted {count} {label}")


@click.group('ledger')
def ledger_group():
    """Inventory ledger commands."""


@ledger_group.command('verify')
@click.option('--upc', default=None, help='Only check this UPC')
@with_appcontext
def verify_ledger_cli(upc):
    """Check the ledger chain invariant."""
    violations = ledger_service.verify_chain(upc)
    if not violations:
        click.echo("PASS Ledger chain is consistent.")
        return
    for v in violations:
        click.echo(f"FAIL {v.upc} entry {v.entry_id} (seq {v.sequence}): {v.problem}")
    raise SystemExit(1)


@ledger_group.command('on-hand')
@click.argument('upc')
@with_appcontext
def on_hand_cli(upc):
    """Print current on-hand quantity for UPC."""
    try:
        click.echo(ledger_service.get_on_hand(upc))
    except LedgerError as e:
        raise click.ClickException(str(e))


@ledger_group.command('adjust')
@click.argument('upc')
@click.argument('reason')
@click.argument('delta', type=int)
@click.option('--note', default=None)
@click.option('--cost-cents', type=int, default=None)
@click.option('--user-id', type=int, default=None)
@click.option('--user-name', default=None)
@with_appcontext
def adjust_cli(upc, reason, delta, note, cost_cents, user_id, user_name):
    """Journal one adjustment (use "--" before a negative DELTA)."""
    try:
        entry = ledger_service.apply_adjustment(
            upc,
            reason,
            delta,
            Actor.from_values(user_id, user_name),
            AdjustmentOptions(note=note, cost_cents=cost_cents),
        )
    except LedgerError as e:
        raise click.ClickException(str(e))
    click.echo(
        f"#{entry.id} {entry.upc} {entry.reason} {entry.delta:+d}: "
        f"{entry.quantity_before} -> {entry.quantity_after}"
    )


@ledger_group.command('history')
@click.argument('upc')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def history_cli(upc, limit):
    """Print recent entries for UPC, newest first."""
    try:
        rows = ledger_service.list_adjustments(AdjustmentFilters(upc=upc), limit=limit)
    except LedgerError as e:
        raise click.ClickException(str(e))
    if not rows:
        click.echo("No entries.")
        return
    click.echo(f"{'ID':<8} {'WHEN':<20} {'REASON':<12} {'DELTA':>7} {'BEFORE':>7} {'AFTER':>7}  BY")
    for e in rows:
        click.echo(
            f"{e.id:<8} {e.created_at:%Y-%m-%d %H:%M:%S} {e.reason:<12} {e.delta:>+7d} "
            f"{e.quantity_before:>7} {e.quantity_after:>7}  {e.actor_name or '-'}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
