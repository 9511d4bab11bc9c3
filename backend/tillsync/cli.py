# Overview: Flask CLI command groups for bootstrap, tenant setup, and offline inspection.

# backend/tillsync/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables and the permission catalog (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant management:
# - python -m flask tenants create --name "Corner Shop" --owner alice [--branch "Main"] [--tier BUSINESS]
#   Create a business with one branch, default roles and an admin owner.
#
# Offline devices:
# - python -m flask devices list --business-id 1 [--status ACTIVE]
#   List offline devices of a business.
# - python -m flask devices revoke --business-id 1 --user-id 1 <device_id>
#   Revoke an offline device.
#
# Offline monitoring:
# - python -m flask offline risk --business-id 1
#   Print the offline risk overview.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Business
from .services import permission_service, tenant_service
from .services.offline_device_service import OfflineRequestError
from .services.offline_sync_service import OfflineSyncService
from .time_utils import to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create tables and the permission catalog. Safe to run repeatedly."""
    click.echo("START Initializing tillsync...")

    db.create_all()
    click.echo("PASS Tables ready")

    permission_service.initialize_permissions()
    db.session.commit()
    click.echo("PASS Permissions initialized")

    click.echo("DONE tillsync initialized")


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

    permission_service.initialize_permissions()
    db.session.commit()

    click.echo("PASS Database reset complete")


@click.group('tenants')
def tenants_group():
    """Business (tenant) management commands."""


@tenants_group.command('create')
@click.option('--name', required=True, help='Business name')
@click.option('--owner', 'owner_username', required=True, help='Owner username (created if missing)')
@click.option('--branch', 'branch_name', default='Main', help='Name of the first branch')
@click.option('--tier', type=click.Choice(['STARTER', 'BUSINESS', 'ENTERPRISE']), default='BUSINESS')
@with_appcontext
def create_tenant(name, owner_username, branch_name, tier):
    """Create a business with one branch, default roles and an admin owner."""
    business, owner, branch = tenant_service.create_business(
        name=name,
        owner_username=owner_username,
        branch_name=branch_name,
        subscription_tier=tier,
    )
    click.echo(f"PASS Created business: {business.name} (ID: {business.id}, Tier: {business.subscription_tier})")
    click.echo(f"PASS Branch: {branch.name} (ID: {branch.id})")
    click.echo(f"PASS Owner: {owner.username} (ID: {owner.id}) with role 'admin'")


def _require_business(business_id: int) -> Business:
    business = db.session.get(Business, business_id)
    if not business:
        raise click.ClickException(f"Business {business_id} not found")
    return business


@click.group('devices')
def devices_group():
    """Offline device inspection commands."""


@devices_group.command('list')
@click.option('--business-id', type=int, required=True)
@click.option('--status', type=click.Choice(['ACTIVE', 'REVOKED', 'EXPIRED']), default=None)
@with_appcontext
def list_devices(business_id, status):
    """List offline devices of a business."""
    _require_business(business_id)
    devices = OfflineSyncService().devices.list_devices(business_id, status=status)

    if not devices:
        click.echo("WARN  No offline devices found")
        return

    click.echo(f"\n{'ID':<38} {'Name':<20} {'User':<6} {'Status':<8} {'Last seen'}")
    click.echo("-" * 96)
    for device in devices:
        last_seen = to_utc_z(device.last_seen_at) if device.last_seen_at else "never"
        click.echo(f"{device.id:<38} {device.device_name[:20]:<20} {device.user_id:<6} {device.status:<8} {last_seen}")
    click.echo(f"\nTotal: {len(devices)} device(s)")


@devices_group.command('revoke')
@click.argument('device_id')
@click.option('--business-id', type=int, required=True)
@click.option('--user-id', type=int, required=True, help='Operator recorded in the audit trail')
@with_appcontext
def revoke_device(device_id, business_id, user_id):
    """Revoke an offline device."""
    _require_business(business_id)
    try:
        device = OfflineSyncService().devices.revoke_device(business_id, user_id, device_id)
    except OfflineRequestError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Revoked device {device.id} ({device.device_name})")


@click.group('offline')
def offline_group():
    """Offline monitoring commands."""


@offline_group.command('risk')
@click.option('--business-id', type=int, required=True)
@with_appcontext
def offline_risk(business_id):
    """Print the offline risk overview of a business."""
    business = _require_business(business_id)
    overview = OfflineSyncService().get_risk_overview(business_id)

    click.echo(f"Business: {business.name} (ID: {business.id})")
    click.echo(f"Offline enabled: {'yes' if overview['offline_enabled'] else 'no'}")
    click.echo(f"Risk: {overview['risk_level']} (score {overview['risk_score']})")
    devices = overview["devices"]
    click.echo(
        f"Devices: {devices['active']} active, {devices['stale']} stale "
        f"(>{overview['stale_threshold_hours']}h), {devices['expired']} expired"
    )
    actions = overview["actions"]
    click.echo(f"Actions: {actions['pending']} pending, {actions['failed']} failed, {actions['conflicts']} conflicts")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(devices_group)
    app.cli.add_command(offline_group)
