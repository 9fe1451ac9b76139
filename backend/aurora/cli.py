# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/aurora/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-email admin@aurora.local]
#   Idempotent bootstrap: creates tables and the default admin.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--role PROMOTER]
#   List users with role, level and active status.
# - python -m flask users create --name "Ana" --email ana@aurora.local --role PROMOTER --level SENIOR
#   Create a user (prompts for the password).
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions --retention-days 30
#   Delete expired or revoked sessions older than the retention window.

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .extensions import db
from .models import User, SessionToken
from .models.users import ROLE_ADMIN, VALID_ROLES
from .services.auth_service import create_user, AuthError, PasswordValidationError
from .time_utils import utcnow


DEFAULT_ADMIN_PASSWORD = "Aurora123"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-email', default='admin@aurora.local', help='Email of the default admin')
@with_appcontext
def init_system(admin_email):
    """
    Create all tables and the default admin account.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing Aurora backend...")
    db.create_all()
    click.echo("PASS Tables created")

    existing = db.session.query(User).filter_by(email=admin_email.lower()).first()
    if existing:
        click.echo(f"WARN  User '{admin_email}' already exists, skipping...")
    else:
        user = create_user(
            name="Administrador",
            email=admin_email,
            password=DEFAULT_ADMIN_PASSWORD,
            role=ROLE_ADMIN,
        )
        click.echo(f"PASS Created admin: {user.email} (ID: {user.id})")
        click.echo(f"\nDefault credentials (CHANGE IN PRODUCTION!): {user.email} / {DEFAULT_ADMIN_PASSWORD}")

    click.echo("DONE Aurora backend initialized")


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


@users_group.command('create')
@click.option('--name', prompt=True, help='Full name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(VALID_ROLES, case_sensitive=False), prompt=True, help='Role')
@click.option('--level', default=None, help='Promoter level (JUNIOR, SENIOR, COORDINATOR)')
@click.option('--superior-id', type=int, default=None, help='Superior promoter ID')
@with_appcontext
def create_user_cli(name, email, password, role, level, superior_id):
    """Create a user."""
    try:
        user = create_user(
            name=name,
            email=email,
            password=password,
            role=role,
            promoter_level=level,
            superior_id=superior_id,
        )
        click.echo(f"PASS Created user: {user.name} ({user.email}) role={user.role} ID={user.id}")

    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit")
    except AuthError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@click.option('--role', default=None, help='Filter by role')
@with_appcontext
def list_users(role):
    """List users."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role.upper())

    users = query.order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<30} {'Role':<10} {'Level':<12} {'Active'}")
    click.echo("="*100)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(
            f"{user.id:<5} {user.name[:24]:<25} {user.email[:29]:<30} {user.role:<10} "
            f"{user.promoter_level or '-':<12} {active_str}"
        )
    click.echo("="*100 + "\n")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(retention_days):
    """Delete expired or revoked sessions older than the retention window."""
    now = utcnow()
    deleted = db.session.query(SessionToken).filter(
        db.or_(SessionToken.expires_at < now, SessionToken.revoked_at.isnot(None)),
        SessionToken.created_at < now - timedelta(days=retention_days),
    ).delete(synchronize_session=False)
    db.session.commit()
    click.echo(f"Deleted {deleted} sessions older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
