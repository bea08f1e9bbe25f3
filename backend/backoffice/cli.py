# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and seeds the document sequence counters.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Numbering:
# - python -m flask sequences list
#   Show prefix and next number per document type.
# - python -m flask sequences set-prefix sale "FAC-A-"
#   Change the prefix used for future numbers of a document type.
#
# Ledger inspection:
# - python -m flask ledger verify
#   Check that stock and balance snapshots match the latest ledger movements.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .errors import BackofficeError
from .services import cash_closing_service, integrity_service, sequence_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the back office: schema plus one sequence counter per
    document type (sale, purchase, budget, quote, receipt)
    and one cash-closing guard row per scope.

    Existing counters keep their prefix and position.
    """
    click.echo("START Initializing back office...")

    db.create_all()
    click.echo("PASS Schema ready")

    created = sequence_service.ensure_sequences(current_app.config["DEFAULT_SEQUENCE_PREFIXES"])
    cash_closing_service.ensure_scope_guards()
    db.session.commit()
    if created:
        click.echo(f"PASS Created sequence counters: {', '.join(s.document_type for s in created)}")
    else:
        click.echo("PASS Sequence counters already present")


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


@click.group('sequences')
def sequences_group():
    """Document numbering inspection and configuration."""


@sequences_group.command('list')
@with_appcontext
def list_sequences():
    """List sequence counters."""
    rows = sequence_service.list_sequences()
    if not rows:
        click.echo("No sequence counters. Run 'python -m flask system init'.")
        return
    click.echo(f"{'TYPE':<10} {'PREFIX':<10} {'NEXT':>8}")
    for seq in rows:
        click.echo(f"{seq.document_type:<10} {seq.prefix:<10} {seq.next_number:>8}")


@sequences_group.command('set-prefix')
@click.argument('document_type')
@click.argument('prefix')
@with_appcontext
def set_prefix(document_type, prefix):
    """Change the prefix of DOCUMENT_TYPE to PREFIX."""
    try:
        seq = sequence_service.set_prefix(document_type, prefix)
    except BackofficeError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS {seq.document_type} now numbers as {seq.prefix}{seq.next_number:0{current_app.config['DOCUMENT_NUMBER_PAD']}d}")


@click.group('ledger')
def ledger_group():
    """Ledger inspection commands."""


@ledger_group.command('verify')
@with_appcontext
def verify_ledgers():
    """Compare stock/balance snapshots with the latest ledger movements."""
    problems = integrity_service.verify_ledgers()
    if not problems:
        click.echo("PASS Ledgers consistent")
        return

    for p in problems:
        click.echo(
            f"FAIL {p['ledger']} #{p['entity_id']}: {p['problem']} "
            f"(snapshot={p['snapshot']}, ledger={p['ledger_value']})"
        )
    raise click.ClickException(f"{len(problems)} ledger discrepancies found")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sequences_group)
    app.cli.add_command(ledger_group)
