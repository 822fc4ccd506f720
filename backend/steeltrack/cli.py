# Overview: Flask CLI command groups for bootstrap, provisioning, inspection, and maintenance.

# backend/steeltrack/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system seed-admin --phone 9876543210 --name "Head Office"
#   Create the Super Admin identity (idempotent). It activates on first OTP login.
# - python -m flask system seed-products --admin-phone 9876543210
#   Insert the standard steel rod / TMT bar catalog.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/provisioning:
# - python -m flask users list [--role DEALER]
# - python -m flask users create --role DEALER --phone 9123456780 --name "Shree Steels"
#   (the Super Admin must have logged in once; provisioning needs an ACTIVE caller)
# - python -m flask users create --role BARBENDER --phone 9000000001 --name "Ravi" --dealer-phone 9123456780
#
# Hierarchy repair:
# - python -m flask mappings reconcile [--fix]
#   Report (and optionally repair) dealers whose ASO reference and mapping row disagree.
#
# Ledger audit:
# - python -m flask ledger verify
#   Compare cached balances with their replayed entry history.
#
# Maintenance:
# - python -m flask maintenance purge-expired
#   Delete expired OTP codes and rate-limit records.
# - python -m flask maintenance cleanup-security-events --retention-days 90
#   Delete security events older than the retention window.
# - python -m flask maintenance security-events [--phone 9123456780] [--type PERMISSION_DENIED]
#   Show recent audit entries, newest first.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import ServiceError
from .models import User
from .models.identity import ROLES, ROLE_SUPER_ADMIN, ROLE_BARBENDER
from .models.security import SECURITY_EVENT_TYPES
from .services import identity_service, ledger_service, mapping_service, otp_service, product_service
from .services.security_service import cleanup_security_events, list_security_events


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('seed-admin')
@click.option('--country-code', default='91', show_default=True)
@click.option('--phone', required=True, help='Super Admin phone number (10-15 digits)')
@click.option('--name', default='Super Admin', show_default=True)
@with_appcontext
def seed_admin(country_code, phone, name):
    """Create the Super Admin identity. Safe to run repeatedly."""
    try:
        user = identity_service.bootstrap_super_admin(country_code, phone, name)
    except ServiceError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Super Admin ready: {user.name} (ID: {user.id}, Phone: +{user.country_code} {user.phone_no}, Status: {user.status})")


@system_group.command('seed-products')
@click.option('--admin-phone', required=True, help='Phone of the Super Admin recorded as creator')
@with_appcontext
def seed_products(admin_phone):
    """Insert the standard rod / TMT catalog, skipping existing codes."""
    admin = db.session.query(User).filter_by(phone_no=admin_phone, role=ROLE_SUPER_ADMIN).first()
    if not admin:
        click.echo(f"FAIL No Super Admin with phone {admin_phone}")
        raise SystemExit(1)

    created = product_service.seed_sample_products(admin.id)
    db.session.commit()
    click.echo(f"PASS {len(created)} sample products created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate every table."""
    if not yes and not click.confirm("This deletes ALL data. Continue?"):
        click.echo("Aborted.")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """User provisioning and inspection commands."""


@users_group.command('create')
@click.option('--role', required=True, type=click.Choice(['ASO', 'DEALER', 'BARBENDER'], case_sensitive=False))
@click.option('--country-code', default='91', show_default=True)
@click.option('--phone', required=True)
@click.option('--name', required=True)
@click.option('--dealer-phone', help='Owning dealer (required for BARBENDER)')
@with_appcontext
def create_user_cli(role, country_code, phone, name, dealer_phone):
    """
    Provision a PENDING identity with the same rules as the API.

    ASOs and Dealers are created on behalf of the first Super Admin;
    Barbenders on behalf of their (ACTIVE) dealer.
    """
    role = role.upper()
    if role == ROLE_BARBENDER:
        if not dealer_phone:
            click.echo("FAIL --dealer-phone is required for BARBENDER")
            raise SystemExit(1)
        actor = db.session.query(User).filter_by(phone_no=dealer_phone).first()
    else:
        actor = db.session.query(User).filter_by(role=ROLE_SUPER_ADMIN).order_by(User.id).first()

    if not actor:
        click.echo("FAIL Provisioning identity not found (seed a Super Admin or check --dealer-phone)")
        raise SystemExit(1)

    try:
        user = identity_service.provision_user(actor.id, role, country_code, phone, name)
        db.session.commit()
    except ServiceError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.kind}: {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Created {user.role} {user.name} (ID: {user.id}, Status: {user.status})")


@users_group.command('list')
@click.option('--role', type=click.Choice(list(ROLES), case_sensitive=False), help='Filter by role')
@with_appcontext
def list_users_cli(role):
    """List all users with role, status and balances."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role.upper())
    users = query.order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Phone':<16} {'Name':<24} {'Role':<12} {'Status':<9} {'Available':>12} {'Reward':>12}")
    click.echo("="*100)

    for user in users:
        click.echo(
            f"{user.id:<5} {user.phone_no:<16} {user.name[:24]:<24} {user.role:<12} {user.status:<9} "
            f"{float(user.available_qty or 0):>12.3f} {float(user.reward_eligible_qty or 0):>12.3f}"
        )

    click.echo("="*100 + "\n")


@click.group('mappings')
def mappings_group():
    """ASO-Dealer hierarchy commands."""


@mappings_group.command('reconcile')
@click.option('--fix', is_flag=True, help='Rewrite mapping rows to match dealer references')
@with_appcontext
def reconcile_cli(fix):
    issues = mapping_service.reconcile_mappings(fix=fix)
    if not issues:
        click.echo("PASS Mappings consistent")
        return

    for issue in issues:
        click.echo(f"{'FIXED' if fix else 'FAIL'} dealer {issue['dealer_id']}: {issue['issue']} (aso {issue['aso_id']})")
    if not fix:
        raise SystemExit(1)


@click.group('ledger')
def ledger_group():
    """Balance ledger audit commands."""


@ledger_group.command('verify')
@with_appcontext
def verify_ledger_cli():
    """Replay balance entries and compare with cached user balances."""
    mismatches = ledger_service.verify_balances()
    if not mismatches:
        click.echo("PASS All balances match their ledger history")
        return

    for m in mismatches:
        click.echo(f"FAIL user {m['user_id']} {m['account']}: cached {m['cached']} != replayed {m['replayed']}")
    raise SystemExit(1)


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('purge-expired')
@with_appcontext
def purge_expired_cli():
    """Delete OTP codes and rate-limit records past their expiry."""
    result = otp_service.purge_expired_records()
    click.echo(f"Deleted {result['otp_codes']} expired OTP codes and {result['rate_limits']} expired rate-limit records.")


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """
    Cleanup old security events.

    Default retention: 90 days.
    """
    deleted = cleanup_security_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


@maintenance_group.command('security-events')
@click.option('--phone', 'phone_no', default=None, help='Only events for this user')
@click.option('--type', 'event_type', type=click.Choice(list(SECURITY_EVENT_TYPES), case_sensitive=False))
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def security_events_cli(phone_no, event_type, limit):
    """Show the most recent security events, newest first."""
    user_id = None
    if phone_no:
        user = db.session.query(User).filter_by(phone_no=phone_no).first()
        if not user:
            click.echo(f"FAIL No user with phone {phone_no}")
            raise SystemExit(1)
        user_id = user.id

    events = list_security_events(
        user_id=user_id,
        event_type=event_type.upper() if event_type else None,
        limit=limit,
    )
    if not events:
        click.echo("No security events found.")
        return

    for event in events:
        click.echo(
            f"{event.occurred_at:%Y-%m-%d %H:%M:%S} {event.event_type:<20} "
            f"{'ok' if event.success else 'FAIL':<5} user={event.user_id} {event.reason or ''}".rstrip()
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(mappings_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(maintenance_group)
