# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/codetrack/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: flask --app codetrack <group> <command> [options]
#
# System bootstrap/repair:
# - flask --app codetrack system init-db
#   Create any missing tables (idempotent).
# - flask --app codetrack system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organizations (mirrors of the external org registry):
# - flask --app codetrack orgs list
# - flask --app codetrack orgs create --name "Acme Foods" --code ACME --type MANUFACTURER
#
# Orders (local fixtures for trials; production orders come from the ordering system):
# - flask --app codetrack orders create --order-no PO-1001 --buyer-org-id 2 --seller-org-id 1 [--buffer 10] [--units-per-case 24]
# - flask --app codetrack orders add-line --order-id 1 --product-code SKU-1 --product-name "Cola 330ml" --quantity 480
# - flask --app codetrack orders set-status --order-id 1 --status approved
#
# Batches:
# - flask --app codetrack batches generate --order-id 1 [--buffer 10] [--units-per-case 24]
# - flask --app codetrack batches show --batch-id 1
# - flask --app codetrack batches export --batch-id 1
#
# Shipment sessions:
# - flask --app codetrack sessions list [--status open]
# - flask --app codetrack sessions expire-stale
#   Expire open sessions past their TTL and release their claims.

import click
from flask.cli import with_appcontext

from .errors import TrackingError
from .extensions import db
from .models import Order, OrderLine, Organization
from .models.orders import ORDER_STATUSES
from .models.tenancy import ORG_TYPES
from .services import batch_service, export_service, maintenance_service, org_service, shipment_service
from .services.concurrency import commit_or_rollback


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Schema ready")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the scan ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("BUILD  Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


# =============================================================================
# Organizations
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.id.asc()).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*72)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<12} {'Type':<14} {'Active'}")
    click.echo("="*72)
    for org in orgs:
        active_str = "Yes" if org.is_active else "No"
        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<12} {org.org_type:<14} {active_str}")
    click.echo("="*72 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--type', 'org_type', required=True, type=click.Choice(ORG_TYPES), help='Organization type')
@with_appcontext
def create_org_cli(name, code, org_type):
    """Create an organization."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = org_service.create_organization(name=name, code=code, org_type=org_type)
    db.session.commit()
    click.echo(f"PASS Created {org.org_type} organization: {org.name} (ID: {org.id}, Code: {org.code})")


# =============================================================================
# Orders
# =============================================================================

@click.group('orders')
def orders_group():
    """Local order fixtures."""


@orders_group.command('create')
@click.option('--order-no', required=True)
@click.option('--buyer-org-id', type=int, required=True)
@click.option('--seller-org-id', type=int, required=True, help='Manufacturer organization')
@click.option('--buffer', 'buffer_percent', type=int, default=None)
@click.option('--units-per-case', type=int, default=None)
@with_appcontext
def create_order_cli(order_no, buyer_org_id, seller_org_id, buffer_percent, units_per_case):
    """Create a draft order."""
    order = Order(
        order_no=order_no,
        buyer_org_id=buyer_org_id,
        seller_org_id=seller_org_id,
        buffer_percent=buffer_percent,
        units_per_case=units_per_case,
    )
    db.session.add(order)
    db.session.commit()
    click.echo(f"PASS Created order {order.order_no} (ID: {order.id})")


@orders_group.command('add-line')
@click.option('--order-id', type=int, required=True)
@click.option('--product-code', required=True)
@click.option('--product-name', required=True)
@click.option('--variant-code', default=None)
@click.option('--variant-name', default=None)
@click.option('--quantity', type=click.IntRange(min=1), required=True)
@with_appcontext
def add_order_line_cli(order_id, product_code, product_name, variant_code, variant_name, quantity):
    """Add a product line to an order."""
    order = db.session.get(Order, order_id)
    if not order:
        click.echo(f"FAIL Order {order_id} not found")
        return
    line = OrderLine(
        order_id=order.id,
        product_code=product_code,
        product_name=product_name,
        variant_code=variant_code,
        variant_name=variant_name,
        quantity=quantity,
    )
    db.session.add(line)
    db.session.commit()
    click.echo(f"PASS Added line {line.id}: {quantity} x {product_code}")


@orders_group.command('set-status')
@click.option('--order-id', type=int, required=True)
@click.option('--status', type=click.Choice(ORDER_STATUSES), required=True)
@with_appcontext
def set_order_status_cli(order_id, status):
    """Move an order to another status."""
    order = db.session.get(Order, order_id)
    if not order:
        click.echo(f"FAIL Order {order_id} not found")
        return
    order.status = status
    db.session.commit()
    click.echo(f"PASS Order {order.order_no} is now {status}")


# =============================================================================
# Batches
# =============================================================================

@click.group('batches')
def batches_group():
    """Code batch generation and inspection."""


@batches_group.command('generate')
@click.option('--order-id', type=int, required=True)
@click.option('--buffer', 'buffer_percent', type=int, default=None)
@click.option('--units-per-case', type=int, default=None)
@click.option('--skip-export', is_flag=True, help='Do not write the workbook')
@with_appcontext
def generate_batch_cli(order_id, buffer_percent, units_per_case, skip_export):
    """Generate the code hierarchy for an approved order."""
    try:
        batch = batch_service.generate_batch(
            order_id=order_id,
            user_id="cli",
            buffer_percent=buffer_percent,
            units_per_case=units_per_case,
        )
        commit_or_rollback()
    except TrackingError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.code}: {e.message}")
        return

    click.echo(
        f"PASS Batch {batch.id}: {batch.total_unique_codes} unit codes, "
        f"{batch.total_master_codes} cases of {batch.units_per_case}"
    )
    if not skip_export:
        path = export_service.export_batch_artifact(batch.id)
        commit_or_rollback()
        click.echo(f"PASS Workbook written to {path}")


@batches_group.command('show')
@click.option('--batch-id', type=int, required=True)
@with_appcontext
def show_batch_cli(batch_id):
    """Print batch progress."""
    try:
        summary = batch_service.get_batch_summary(batch_id)
    except TrackingError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"Batch {summary['id']} (order {summary['order_no']}) - {summary['status']}")
    click.echo(f"  Unit codes:     {summary['total_unique_codes']} ({summary['linked_unit_count']} linked)")
    click.echo(f"  Cases:          {summary['total_master_codes']} ({summary['sealed_master_count']} sealed)")
    click.echo(f"  Received:       {summary['received_master_count']} cases / {summary['received_unit_count']} units")
    for status, count in sorted(summary["master_status_counts"].items()):
        click.echo(f"    {status:<24} {count}")
    click.echo(f"  Workbook:       {summary['artifact_ref'] or '-'}")


@batches_group.command('export')
@click.option('--batch-id', type=int, required=True)
@with_appcontext
def export_batch_cli(batch_id):
    """(Re)write the batch workbook."""
    try:
        path = export_service.export_batch_artifact(batch_id)
        commit_or_rollback()
    except TrackingError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS Workbook written to {path}")


# =============================================================================
# Shipment sessions
# =============================================================================

@click.group('sessions')
def sessions_group():
    """Shipment session inspection and maintenance."""


@sessions_group.command('list')
@click.option('--org-id', type=int, default=None, help='Origin warehouse')
@click.option('--status', default=None)
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_sessions_cli(org_id, status, limit):
    """List recent shipment sessions."""
    sessions, total = shipment_service.list_sessions(origin_org_id=org_id, status=status, limit=limit)
    if not sessions:
        click.echo("No shipment sessions found.")
        return
    click.echo(f"{'ID':<6} {'Document':<18} {'Status':<9} {'From':<6} {'To':<6} {'Expected':<9} {'Expires'}")
    for s in sessions:
        expected = s.expected_quantity if s.expected_quantity is not None else "-"
        expires = s.expires_at.isoformat(timespec="minutes") if s.expires_at else "-"
        click.echo(f"{s.id:<6} {s.document_number:<18} {s.status:<9} {s.origin_org_id:<6} {s.destination_org_id:<6} {expected!s:<9} {expires}")
    click.echo(f"({len(sessions)} of {total})")


@sessions_group.command('expire-stale')
@click.option('--limit', type=int, default=500, show_default=True)
@with_appcontext
def expire_stale_sessions_cli(limit):
    """Expire open sessions past their TTL and release their claims."""
    expired = maintenance_service.expire_stale_sessions(limit=limit)
    click.echo(f"Expired {expired} stale shipment session(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(batches_group)
    app.cli.add_command(sessions_group)
