# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/storefront/cli.py
# Run from backend/ with FLASK_APP=wsgi.py and the virtualenv active:
#
#   flask db upgrade                          apply Alembic migrations
#   flask system reset-db --yes               drop and recreate every table (local only)
#   flask users create --email ... --role admin
#   flask users list [--role admin]
#   flask users set-role <email> <role>
#   flask maintenance cleanup-tokens [--grace-days N]

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Role, User
from .services.auth_service import AuthError, PasswordValidationError, create_user, set_role
from .services import maintenance_service


ROLE_CHOICES = [r.value for r in Role]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """Drop and recreate the schema, destroying all data."""
    if not yes:
        click.confirm(f"Wipe {db.engine.url.render_as_string(hide_password=True)}?", abort=True)

    db.drop_all()
    db.create_all()

    click.echo("PASS Schema recreated. Add an admin with 'flask users create --role admin'.")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--first-name', prompt=True, help='First name')
@click.option('--last-name', prompt=True, help='Last name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ROLE_CHOICES), default=Role.CUSTOMER.value, show_default=True)
@with_appcontext
def create_user_cli(email, first_name, last_name, password, role):
    """Create an account; the password goes through the same strength rules as /api/auth/register."""
    try:
        user = create_user(
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            role=Role(role),
        )
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        raise SystemExit(1)
    except AuthError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Created user: {user.email} (ID: {user.id}) with role '{user.role.value}'")


@users_group.command('list')
@click.option('--role', type=click.Choice(ROLE_CHOICES), help='Filter by role')
@with_appcontext
def list_users(role):
    """List users with role and active status."""
    query = db.session.query(User).order_by(User.id.asc())
    if role:
        query = query.filter(User.role == Role(role))
    users = query.all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Email':<35} {'Name':<25} {'Role':<12} {'Active'}")
    click.echo("="*80)
    for user in users:
        name = f"{user.first_name} {user.last_name}"
        active_str = "yes" if user.is_active else "no"
        click.echo(f"{user.id:<5} {user.email:<35} {name:<25} {user.role.value:<12} {active_str}")
    click.echo("="*80 + "\n")


@users_group.command('set-role')
@click.argument('email')
@click.argument('role', type=click.Choice(ROLE_CHOICES))
@with_appcontext
def set_role_cli(email, role):
    """Change the role of an existing user."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        click.echo(f"FAIL User '{email}' not found")
        raise SystemExit(1)

    set_role(user, Role(role))
    click.echo(f"PASS {user.email} is now '{user.role.value}'")


# =============================================================================
# MAINTENANCE COMMANDS
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-tokens')
@click.option('--grace-days', type=int, default=0, show_default=True)
@with_appcontext
def cleanup_tokens_cli(grace_days):
    """
    Cleanup expired refresh tokens and spent password reset tokens.

    Revoked refresh tokens are kept until they expire.
    """
    tokens = maintenance_service.cleanup_expired_tokens(grace_days=grace_days)
    resets = maintenance_service.cleanup_password_resets()
    click.echo(f"Deleted {tokens} expired refresh tokens and {resets} password reset tokens.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
