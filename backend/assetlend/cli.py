# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/assetlend/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (dev shortcut; use `flask db upgrade` for migrations).
# - python -m flask system seed-demo
#   Idempotent demo data: two stores, one user per role, a few items.
#
# User inspection/bootstrap:
# - python -m flask users list [--role store_keeper]
#   List active users with their roles.
# - python -m flask users create --username keeper --email keeper@assetlend.local --role store_keeper
#   Create a user (prompts if options are omitted).
#
# Audit maintenance:
# - python -m flask audit cleanup --retention-days 365
#   Delete audit rows older than the retention window.
# - python -m flask audit integrity
#   Report orphaned actors, missing timestamps and unknown action types.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import LendingError
from .extensions import db
from .models import Item, Store, User
from .permissions import ROLES
from .services import audit_service, inventory_service, user_service
from .services.concurrency import run_in_transaction


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


DEMO_STORES = [
    {"name": "Main Store", "code": "MAIN", "location": "Head office, ground floor"},
    {"name": "Branch Store", "code": "BRANCH", "location": "Site office"},
]

DEMO_USERS = [
    ("admin", "admin@assetlend.local", "admin", "Admin User"),
    ("manager", "manager@assetlend.local", "manager", "Maria Manager"),
    ("keeper", "keeper@assetlend.local", "store_keeper", "Kim Keeper"),
    ("employee", "employee@assetlend.local", "employee", "Eli Employee"),
    ("driver", "driver@assetlend.local", "delivery_staff", "Dana Driver"),
]

DEMO_ITEMS = [
    {"sku": "LAP-001", "name": "Laptop", "description": "14-inch business laptop", "quantity": 8, "min_stock_level": 2},
    {"sku": "PRJ-001", "name": "Projector", "description": "Portable HD projector", "quantity": 3, "min_stock_level": 1},
    {"sku": "DRL-001", "name": "Cordless Drill", "quantity": 5, "min_stock_level": 2},
    {"sku": "CAM-001", "name": "Camera", "description": "Mirrorless camera kit", "quantity": 1, "min_stock_level": 1},
]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Seed demo stores, users and items. Safe to run repeatedly.

    Items are created in the first store; existing rows are left alone.
    """
    created = {"stores": 0, "users": 0, "items": 0}

    stores = []
    for row in DEMO_STORES:
        store = db.session.query(Store).filter_by(name=row["name"]).first()
        if store is None:
            store = run_in_transaction(lambda s=row: inventory_service.create_store(dict(s)))
            created["stores"] += 1
        stores.append(store)
    main_store = stores[0]

    for username, email, role, full_name in DEMO_USERS:
        if db.session.query(User).filter_by(username=username).first():
            continue
        run_in_transaction(
            lambda u=username, e=email, r=role, n=full_name: user_service.create_user(
                username=u, email=e, role=r, full_name=n, store_id=main_store.id
            )
        )
        created["users"] += 1

    for row in DEMO_ITEMS:
        if db.session.query(Item).filter_by(store_id=main_store.id, sku=row["sku"]).first():
            continue
        run_in_transaction(
            lambda s=row: inventory_service.create_item({**s, "store_id": main_store.id})
        )
        created["items"] += 1

    click.echo("Seed completed.")
    for store in stores:
        click.echo(f"Store: {store.name} (ID: {store.id})")
    click.echo("")
    click.echo("Created this run:")
    for key in sorted(created):
        click.echo(f"  {key:<10} {created[key]}")
    click.echo("")
    click.echo("Act as a user by sending its id in the X-Actor-Id header.")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--role', type=click.Choice(ROLES), prompt=True, default='employee', show_default=True)
@click.option('--full-name', default=None, help='Display name')
@click.option('--store-id', type=int, default=None, help='Home store ID')
@with_appcontext
def create_user_cli(username, email, role, full_name, store_id):
    """Create a user."""
    try:
        user = run_in_transaction(
            lambda: user_service.create_user(
                username=username,
                email=email,
                role=role,
                full_name=full_name,
                store_id=store_id,
            )
        )
    except LendingError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Created user '{user.username}' (ID: {user.id}, role: {user.role})")


@users_group.command('list')
@click.option('--role', type=click.Choice(ROLES), default=None, help='Filter by role')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive users')
@with_appcontext
def list_users_cli(role, include_inactive):
    """List users with their roles."""
    users = user_service.list_users(role=role, include_inactive=include_inactive)

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<16} {'Active'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {user.role:<16} {active_str}")

    click.echo("="*90 + "\n")


@click.group('audit')
def audit_group():
    """Audit trail maintenance commands."""


@audit_group.command('cleanup')
@click.option('--retention-days', type=int, default=None, help='Defaults to AUDIT_RETENTION_DAYS')
@with_appcontext
def cleanup_audit_cli(retention_days):
    """Delete audit rows older than the retention window."""
    if retention_days is None:
        retention_days = current_app.config["AUDIT_RETENTION_DAYS"]
    if retention_days < 1:
        click.echo("FAIL --retention-days must be >= 1")
        return

    deleted = run_in_transaction(lambda: audit_service.cleanup_old_logs(retention_days=retention_days))
    click.echo(f"Deleted {deleted} audit rows older than {retention_days} days.")


@audit_group.command('integrity')
@with_appcontext
def audit_integrity_cli():
    """Run the audit integrity checks."""
    report = audit_service.integrity_check()

    for check in report["checks"]:
        click.echo(f"{check['status']} {check['name']:<20} {check['details']}")

    click.echo(f"\nOverall: {report['status']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(audit_group)
