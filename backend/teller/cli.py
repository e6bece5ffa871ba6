# Overview: Flask CLI command groups for bootstrap, drawer inspection, and transaction recovery.

# backend/teller/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to teller (PowerShell: $env:FLASK_APP="teller").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask services seed
#   Create the default bill-payment catalogue (CFE, TELMEX, GNM, ...), idempotent.
# - python -m flask services list
#   List catalogue entries with their commission settings.
#
# Reference checks:
# - python -m flask references validate TELMEX 1234567890 --digit 3
#   Validate a provider reference (format, checksum, verification digit).
#
# Drawer inspection/loading:
# - python -m flask drawer show op-1
#   Show per-denomination drawer inventory and total for an operator.
# - python -m flask drawer load op-1 200 10
#   Add 10 x 200.00 to the operator's drawer (opening float).
# - python -m flask change compute 74.50 [--operator op-1]
#   Compute change with unlimited stock, or against an operator's drawer.
#
# Transaction recovery:
# - python -m flask transactions show 12
# - python -m flask transactions rollback 12 --reason user_cancelled [--detail "..."]
# - python -m flask transactions retry 12 [--max-attempts 2]
# - python -m flask transactions snapshot 12
#   Print a JSON snapshot (transaction, items, denomination entries).
# - python -m flask transactions spei-summary [--date 2026-01-15]
#   Completed Diestel payments scheduled for SPEI settlement.

import json
import math
from datetime import datetime

import click
from flask.cli import with_appcontext

from .denominations import get_denominations
from .errors import TellerError
from .money import from_cents
from .extensions import db
from .models import Service
from .services import recovery_service, transaction_service
from .services.change_service import compute_change
from .services.checksum_service import validate_reference
from .services.concurrency import run_with_retry
from .services.denomination_service import OP_ADD, adjust_drawer, get_drawer_balance, get_drawer_inventory, get_drawer_total
from .services.diestel_service import get_pending_spei_summary


DEFAULT_SERVICES = [
    # (code, name, commission_rate, fixed_commission_cents)
    ("CFE", "Comision Federal de Electricidad", "0", 1000),
    ("TELMEX", "Telmex", "0", 1000),
    ("GNM", "Gas Natural", "0.01", 0),
    ("CABLEVISION", "Cablevision", "0", 800),
    ("TELCEL", "Telcel", "0.015", 0),
    ("DIESTEL", "Diestel", "0", 0),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the audit trail!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


@click.group('services')
def services_group():
    """Bill-payment service catalogue."""


@services_group.command('seed')
@with_appcontext
def seed_services():
    """Create the default service catalogue. Existing codes are left untouched."""
    created = 0
    for code, name, rate, fixed_cents in DEFAULT_SERVICES:
        if db.session.query(Service).filter_by(service_code=code).first():
            click.echo(f"WARN  Service '{code}' already exists, skipping...")
            continue
        db.session.add(Service(
            service_code=code,
            name=name,
            commission_rate=rate,
            fixed_commission_cents=fixed_cents,
            is_active=True,
        ))
        created += 1
    db.session.commit()
    click.echo(f"PASS Seeded {created} services")


@services_group.command('list')
@with_appcontext
def list_services():
    """List catalogue entries."""
    services = db.session.query(Service).order_by(Service.service_code).all()
    if not services:
        click.echo("No services found.")
        return
    for s in services:
        status = "active" if s.is_active else "inactive"
        click.echo(
            f"{s.service_code:<12} {s.name:<36} rate={s.commission_rate} "
            f"fixed={s.to_dict()['fixed_commission']} ({status})"
        )


@click.group('references')
def references_group():
    """Provider reference validation."""


@references_group.command('validate')
@click.argument('provider_code')
@click.argument('reference')
@click.option('--digit', 'verification_digit', default=None, help='Verification digit, when the provider uses one')
@with_appcontext
def validate_reference_cli(provider_code, reference, verification_digit):
    """Validate a reference for PROVIDER_CODE."""
    result = validate_reference(provider_code, reference, verification_digit)
    if result.valid:
        click.echo(f"PASS {provider_code.upper()} reference {result.reference} is valid")
    else:
        click.echo(f"FAIL {result.reason}")
        if result.requires_digit:
            click.echo("      (this provider requires a verification digit)")


@click.group('drawer')
def drawer_group():
    """Operator cash drawer inventory."""


@drawer_group.command('show')
@click.argument('operator_id')
@with_appcontext
def show_drawer(operator_id):
    """Show drawer inventory for OPERATOR_ID."""
    lines = get_drawer_balance(operator_id)
    if not lines:
        click.echo(f"Drawer for {operator_id} is empty.")
        return
    for line in lines:
        click.echo(f"{line.denomination:>10.2f} x {line.quantity:<5} = {line.amount:.2f}")
    click.echo(f"TOTAL {get_drawer_total(operator_id):.2f}")


@drawer_group.command('load')
@click.argument('operator_id')
@click.argument('denomination')
@click.argument('quantity', type=int)
@with_appcontext
def load_drawer(operator_id, denomination, quantity):
    """Add QUANTITY pieces of DENOMINATION to OPERATOR_ID's drawer."""
    def _load():
        line = adjust_drawer(operator_id, denomination, quantity, OP_ADD)
        db.session.commit()
        return line

    try:
        line = run_with_retry(_load)
    except TellerError as e:
        db.session.rollback()
        click.echo(f"FAIL Error: {e.message}")
        return
    click.echo(f"PASS {operator_id} now holds {line.quantity} x {line.denomination:.2f}")


@click.group('change')
def change_group():
    """Change calculation."""


@change_group.command('compute')
@click.argument('amount')
@click.option('--operator', 'operator_id', default=None, help='Constrain to this operator\'s drawer')
@with_appcontext
def compute_change_cli(amount, operator_id):
    """Compute change for AMOUNT (unlimited stock unless --operator is given)."""
    if operator_id:
        inventory = get_drawer_inventory(operator_id)
    else:
        inventory = {from_cents(denom): math.inf for denom in get_denominations()}
    try:
        entries = compute_change(amount, inventory)
    except TellerError as e:
        click.echo(f"FAIL Error: {e.message}")
        for d in e.details.get("deficiencies", []):
            click.echo(f"      short {d['short']} x {d['denomination']}")
        return

    for entry in entries:
        click.echo(f"{entry.denomination:>10.2f} x {entry.quantity}")
    click.echo(f"TOTAL {sum((e.amount for e in entries)):.2f}")


@click.group('transactions')
def transactions_group():
    """Transaction inspection and recovery."""


@transactions_group.command('show')
@click.argument('transaction_id', type=int)
@with_appcontext
def show_transaction(transaction_id):
    """Print transaction detail as JSON."""
    try:
        detail = transaction_service.get_transaction_detail(transaction_id)
    except TellerError as e:
        click.echo(f"FAIL Error: {e.message}")
        return
    click.echo(json.dumps(detail, indent=2, default=str))


@transactions_group.command('rollback')
@click.argument('transaction_id', type=int)
@click.option('--reason', required=True, type=click.Choice(sorted(recovery_service.ROLLBACK_REASONS)))
@click.option('--detail', default=None, help='Free-text explanation appended to the notes')
@click.option('--actor', 'actor_id', default='cli', show_default=True)
@with_appcontext
def rollback_transaction_cli(transaction_id, reason, detail, actor_id):
    """Roll back a transaction within the rollback window."""
    result = recovery_service.rollback_transaction(transaction_id, reason, actor_id=actor_id, detail=detail)
    if not result.success:
        click.echo(f"FAIL {result.reason}")
        return
    click.echo(f"PASS Transaction {transaction_id} rolled back")
    for action in result.actions:
        click.echo(f"  - {action}")


@transactions_group.command('retry')
@click.argument('transaction_id', type=int)
@click.option('--max-attempts', type=int, default=None, help='Capped by RETRY_MAX_ATTEMPTS')
@click.option('--actor', 'actor_id', default='cli', show_default=True)
@with_appcontext
def retry_transaction_cli(transaction_id, max_attempts, actor_id):
    """Retry a FAILED transaction with exponential backoff."""
    try:
        result = recovery_service.retry_transaction(transaction_id, max_attempts, actor_id=actor_id)
    except TellerError as e:
        click.echo(f"FAIL Error: {e.message}")
        return
    if result.success:
        click.echo(f"PASS Transaction {transaction_id} completed after {result.attempts} attempt(s)")
    else:
        click.echo(f"FAIL After {result.attempts} attempt(s): {result.error}")


@transactions_group.command('snapshot')
@click.argument('transaction_id', type=int)
@with_appcontext
def snapshot_transaction(transaction_id):
    """Print a restorable JSON snapshot of a transaction."""
    try:
        snapshot = recovery_service.create_snapshot(transaction_id)
    except TellerError as e:
        click.echo(f"FAIL Error: {e.message}")
        return
    click.echo(json.dumps(snapshot.to_dict(), indent=2, default=str))


@transactions_group.command('spei-summary')
@click.option('--date', 'day', default=None, help='Business date YYYY-MM-DD (default: today)')
@with_appcontext
def spei_summary(day):
    """Completed Diestel payments awaiting SPEI settlement."""
    try:
        summary = get_pending_spei_summary(datetime.strptime(day, "%Y-%m-%d").date() if day else None)
    except ValueError as e:
        click.echo(f"FAIL Error: {str(e)}")
        return
    click.echo(summary["message"])
    for number in summary["transactions"]:
        click.echo(f"  - {number}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(services_group)
    app.cli.add_command(references_group)
    app.cli.add_command(drawer_group)
    app.cli.add_command(change_group)
    app.cli.add_command(transactions_group)
