# Overview: Flask CLI command groups for bootstrap and seeding.

# backend/pharmapos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --username admin --name "Admin" --password "Password123!" --role ADMIN
#   Create a staff account (prompts if options are omitted).
#
# Medicines:
# - python -m flask medicines add --name "Paracetamol 500mg" --price-cents 50 --cost-cents 20 --stock 100 \
#       --units '[{"type": "box", "label": "Box of 10", "quantity": 10, "price_cents": 450}]' --by admin
#   Seed a sellable medicine with optional packaging units; opening stock is logged as an ADDITION.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Medicine, User
from .models.auth import ROLES
from .services.auth_service import create_user
from .services.inventory_service import record_addition
from .services.stock_ledger_service import Actor
from .services.units_service import MalformedUnitsError, load_unit_table
from .validation import ServiceError


OPENING_STOCK_REASON = "Opening stock"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete.")


@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', default=None, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ROLES, case_sensitive=False), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, name, email, password, role):
    """
    Create a new staff account.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(username=username, name=name, password=password, role=role, email=email)
    except ServiceError as e:
        db.session.rollback()
        raise click.ClickException(f"Failed to create user: {e.message}")

    click.echo(f"PASS Created user: {user.username} with role '{user.role}'")
    click.echo("SECURITY Password securely hashed with bcrypt")


@click.group('medicines')
def medicines_group():
    """Inventory seeding commands."""


@medicines_group.command('add')
@click.option('--name', required=True, help='Medicine name')
@click.option('--category', default=None, help='Category')
@click.option('--price-cents', type=click.IntRange(min=0), required=True, help='Base unit price in cents')
@click.option('--cost-cents', type=click.IntRange(min=0), default=0, help='Base unit cost in cents')
@click.option('--stock', type=click.IntRange(min=0), default=0, help='Opening stock in base units')
@click.option('--units', 'units_json', default=None, help='JSON list of packaging units')
@click.option('--by', 'by_username', default=None, help='Username recorded on the opening stock movement')
@with_appcontext
def add_medicine_cli(name, category, price_cents, cost_cents, stock, units_json, by_username):
    """Add a medicine; opening stock is recorded as an ADDITION movement."""
    units = None
    if units_json:
        try:
            units = load_unit_table(units_json)
        except MalformedUnitsError as e:
            raise click.BadParameter(str(e), param_hint="--units")

    actor = Actor(id=None, name="system")
    if by_username:
        user = db.session.query(User).filter_by(username=by_username).first()
        if user is None:
            raise click.BadParameter(f"Unknown user: {by_username}", param_hint="--by")
        actor = Actor.from_user(user)

    medicine = Medicine(
        name=name,
        category=category,
        unit_price_cents=price_cents,
        cost_price_cents=cost_cents,
        stock_quantity=0,
        units=units,
    )
    db.session.add(medicine)
    db.session.commit()

    if stock:
        record_addition(medicine.id, stock, actor=actor, reason=OPENING_STOCK_REASON)
        db.session.refresh(medicine)
    click.echo(f"PASS Added medicine #{medicine.id}: {medicine.name} (stock {medicine.stock_quantity})")
    if units:
        click.echo(f"     Units: {json.dumps(units)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(medicines_group)
