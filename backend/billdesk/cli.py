# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/billdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default subscription plans.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create-admin --username admin --email admin@billdesk.local --password "Password123!" --name "Admin"
#   Create an active admin (prompts if options are omitted).
# - python -m flask users list [--role sales] [--status pending]
#   List users with role and status.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions
#   Delete expired/revoked session tokens older than 30 days.
# - python -m flask maintenance cleanup-security-events --retention-days 90
#   Delete security events older than the retention window.
# - python -m flask maintenance expire-quotes
#   Mark pending quotes past their expiry date as expired.
# - python -m flask maintenance mark-overdue
#   Mark pending invoices past their due date as overdue.

import click
from flask.cli import with_appcontext

from .errors import ValidationError
from .extensions import db
from .models import Plan, User
from .policy import Role
from .services import audit_service, auth_service, invoice_service, quote_service, session_service


DEFAULT_PLANS = (
    {
        "name": "Starter",
        "description": "For individuals getting started",
        "price_cents": 900,
        "token_amount": 1000,
        "features": {"support": "email"},
    },
    {
        "name": "Professional",
        "description": "For growing teams",
        "price_cents": 2900,
        "token_amount": 5000,
        "features": {"support": "priority"},
    },
    {
        "name": "Enterprise",
        "description": "For organizations with high volume",
        "price_cents": 9900,
        "token_amount": 25000,
        "features": {"support": "dedicated"},
    },
)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the database: create tables and seed default plans.

    Safe to run repeatedly; existing plans (matched by name) are left alone.
    """
    click.echo("START Initializing billdesk...")
    db.create_all()

    created = 0
    for fields in DEFAULT_PLANS:
        if db.session.query(Plan).filter_by(name=fields["name"]).first():
            continue
        db.session.add(Plan(is_active=True, **fields))
        created += 1
    db.session.commit()

    click.echo(f"PASS Plans: {created} created, {len(DEFAULT_PLANS) - created} already present")
    if not db.session.query(User).filter_by(role=Role.ADMIN.value).first():
        click.echo("WARN No admin user yet. Run 'python -m flask users create-admin'.")


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


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create-admin')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--name', prompt=True, default='Administrator')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def create_admin(username, email, name, password):
    """Create an active admin account."""
    try:
        user = auth_service.create_user(
            username=username,
            email=email,
            password=password,
            name=name,
            role=Role.ADMIN.value,
            status="active",
            discount_limit=100,
        )
    except ValidationError as exc:
        db.session.rollback()
        raise click.ClickException(exc.message)

    audit_service.log_security_event(
        user_id=None, target_user_id=user.id, event_type="USER_CREATED", success=True,
        reason="role=admin (cli)", commit=True,
    )
    click.echo(f"PASS Created admin {user.username} (ID: {user.id})")


@users_group.command('list')
@click.option('--role', type=click.Choice([r.value for r in Role]), help='Filter by role')
@click.option('--status', type=click.Choice(['pending', 'active', 'suspended']), help='Filter by status')
@with_appcontext
def list_users(role, status):
    """List all users with role and status."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)
    if status:
        query = query.filter_by(status=status)
    users = query.order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<10} {'Status'}")
    click.echo("=" * 80)
    for user in users:
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {user.role:<10} {user.status}")
    click.echo("=" * 80 + "\n")


@click.group('maintenance')
def maintenance_group():
    """Periodic cleanup commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Delete expired and revoked sessions older than 30 days."""
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} stale sessions.")


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """
    Cleanup old security events.

    Default retention: 90 days.
    """
    deleted = audit_service.cleanup_security_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


@maintenance_group.command('expire-quotes')
@with_appcontext
def expire_quotes_cli():
    count = quote_service.expire_stale_quotes()
    click.echo(f"Expired {count} quotes.")


@maintenance_group.command('mark-overdue')
@with_appcontext
def mark_overdue_cli():
    count = invoice_service.mark_overdue_invoices()
    click.echo(f"Marked {count} invoices overdue.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
