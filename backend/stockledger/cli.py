# Overview: Flask CLI command groups for bootstrap and ledger inspection.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--org "Org Name"] [--org-code DEFAULT]
#   Idempotent bootstrap: creates a default organization and outlet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger inspection:
# - python -m flask ledger audit [--org-id 1]
#   Check counters against the movement log; exits 1 when anything is off.
# - python -m flask ledger show --org-id 1 [--outlet-id 2] [--product-id 3]
#   Print ledger entries with available and damaged quantities.
# - python -m flask ledger prune --org-id 1
#   Delete empty entries that have no movements or reservations.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import LedgerEntry, Organization, Outlet, Product
from .services import ledger_store
from .services.audit_service import audit_ledger


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Organization name')
@click.option('--org-code', default='DEFAULT', help='Organization code')
@with_appcontext
def init_system(org_name, org_code):
    """Create the default organization and a main outlet if they are missing."""
    db.create_all()

    org = db.session.query(Organization).filter_by(code=org_code).first()
    if not org:
        org = Organization(name=org_name, code=org_code, is_active=True)
        db.session.add(org)
        db.session.commit()
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    outlet = db.session.query(Outlet).filter_by(org_id=org.id).first()
    if not outlet:
        outlet = Outlet(org_id=org.id, name="Main Outlet", code="MAIN")
        db.session.add(outlet)
        db.session.commit()
        click.echo(f"PASS Created outlet: {outlet.name} (ID: {outlet.id})")
    else:
        click.echo(f"PASS Using existing outlet: {outlet.name} (ID: {outlet.id})")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate every table."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection commands."""


@ledger_group.command('audit')
@click.option('--org-id', type=int, default=None, help='Limit to one organization')
@with_appcontext
def audit_cli(org_id):
    """Verify stored counters against the movement log."""
    report = audit_ledger(org_id)

    for finding in report.findings:
        click.echo(
            f"FAIL entry={finding.ledger_entry_id} outlet={finding.outlet_id} "
            f"product={finding.product_id}: {finding.problem}"
        )

    click.echo(
        f"Checked {report.entries_checked} entries and {report.movements_checked} movements, "
        f"{len(report.findings)} finding(s)"
    )
    if not report.ok:
        raise SystemExit(1)
    click.echo("PASS Ledger is consistent")


@ledger_group.command('show')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--outlet-id', type=int, default=None, help='Outlet ID')
@click.option('--product-id', type=int, default=None, help='Product ID')
@with_appcontext
def show_ledger(org_id, outlet_id, product_id):
    """Print ledger entries for an organization."""
    q = (
        db.session.query(LedgerEntry, Outlet, Product)
        .join(Outlet, Outlet.id == LedgerEntry.outlet_id)
        .join(Product, Product.id == LedgerEntry.product_id)
        .filter(LedgerEntry.org_id == org_id)
    )
    if outlet_id is not None:
        q = q.filter(LedgerEntry.outlet_id == outlet_id)
    if product_id is not None:
        q = q.filter(LedgerEntry.product_id == product_id)

    rows = q.order_by(Outlet.name, Product.sku).all()
    if not rows:
        click.echo("No ledger entries found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'Entry':<7} {'Outlet':<24} {'SKU':<20} {'Available':>10} {'Damaged':>10}")
    click.echo("="*80)
    for entry, outlet, product in rows:
        click.echo(
            f"{entry.id:<7} {outlet.name[:24]:<24} {product.sku[:20]:<20} "
            f"{entry.quantity:>10} {entry.damaged_quantity:>10}"
        )
    click.echo("="*80 + "\n")


@ledger_group.command('prune')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def prune_ledger(org_id):
    """Delete empty ledger entries that no movement or reservation references."""
    candidates = (
        db.session.query(LedgerEntry)
        .filter(
            LedgerEntry.org_id == org_id,
            LedgerEntry.quantity == 0,
            LedgerEntry.damaged_quantity == 0,
        )
        .order_by(LedgerEntry.id.asc())
        .all()
    )

    deleted = 0
    for entry in candidates:
        entry_id, outlet_id, product_id = entry.id, entry.outlet_id, entry.product_id
        if ledger_store.delete_entry_if_empty(org_id, outlet_id, product_id):
            deleted += 1
            click.echo(f"PASS Deleted entry={entry_id} outlet={outlet_id} product={product_id}")
    db.session.commit()

    click.echo(f"Pruned {deleted} of {len(candidates)} empty entries")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
