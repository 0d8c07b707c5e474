# Overview: Flask CLI command groups for bootstrap, dispatch and maintenance.

# backend/lpg_dispatch/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--tenant "Gas Co" --tenant-code GASCO]
#   Idempotent bootstrap: creates tables, a default tenant and an admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenants / users / customers:
# - python -m flask tenants create --name "North Depot" --code NORTH
# - python -m flask users create --tenant-code NORTH --username ali --name "Ali" --role driver --vehicle LEA-1234
# - python -m flask users update --tenant-code NORTH --username ali [--name ..] [--role ..] [--phone ..] [--vehicle ..]
# - python -m flask users set-active --tenant-code NORTH --username ali --inactive
#   Deactivation (and a role change) logs the user out everywhere.
# - python -m flask users reset-password --tenant-code NORTH --username ali
# - python -m flask customers create --tenant-code NORTH --name "Hotel One" --phone 0300... --address "..."
#
# Cylinders (dispatch):
# - python -m flask cylinders intake --tenant-code NORTH --size 11.8kg SN-001 SN-002
#   Register new full cylinders in the warehouse.
# - python -m flask cylinders load --tenant-code NORTH --driver ali [--order-id 7] SN-001 SN-002
#   Load full warehouse cylinders onto a driver's truck.
# - python -m flask cylinders release-holds --tenant-code NORTH --driver ali --yes
#   Admin recovery: release a driver's handover_pending cylinders after a failed request.
#
# Orders:
# - python -m flask orders create --tenant-code NORTH --customer-id 1 --driver ali --total-cents 250000 --item "11.8kg:2"

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Tenant, User, Customer, Order, OrderItem
from .models.auth import VALID_ROLES, ROLE_ADMIN
from .services import asset_service
from .services.asset_service import AssetError
from .services.auth_service import create_user, update_user_profile, set_user_password, PasswordValidationError
from .services.session_service import revoke_all_user_sessions


def _tenant_by_code(code: str) -> Tenant:
    tenant = db.session.query(Tenant).filter_by(code=code).first()
    if not tenant:
        raise click.ClickException(f"Tenant '{code}' not found")
    return tenant


def _user_by_username(tenant: Tenant, username: str) -> User:
    user = db.session.query(User).filter_by(tenant_id=tenant.id, username=username).first()
    if not user:
        raise click.ClickException(f"User '{username}' not found in tenant '{tenant.code}'")
    return user


def _driver_by_username(tenant: Tenant, username: str) -> User:
    driver = db.session.query(User).filter_by(tenant_id=tenant.id, username=username).first()
    if not driver or not driver.is_driver:
        raise click.ClickException(f"Driver '{username}' not found in tenant '{tenant.code}'")
    return driver


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--tenant', 'tenant_name', default='Default Distributor', help='Tenant name')
@click.option('--tenant-code', default='DEFAULT', help='Tenant code (used at login)')
@click.option('--admin-password', default='Password123!', help='Password for the default admin')
@with_appcontext
def init_system(tenant_name, tenant_code, admin_password):
    """
    Initialize the system: tables, default tenant and admin user.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing LPG dispatch backend...")
    db.create_all()

    tenant = db.session.query(Tenant).filter_by(code=tenant_code).first()
    if not tenant:
        tenant = Tenant(name=tenant_name, code=tenant_code, is_active=True)
        db.session.add(tenant)
        db.session.commit()
        click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")
    else:
        click.echo(f"PASS Using existing tenant: {tenant.name} (ID: {tenant.id})")

    existing = db.session.query(User).filter_by(tenant_id=tenant.id, username="admin").first()
    if existing:
        click.echo("WARN  User 'admin' already exists in tenant, skipping...")
    else:
        try:
            create_user(tenant.id, "admin", "Administrator", admin_password, ROLE_ADMIN)
            click.echo("PASS Created user: admin with role 'admin'")
        except (ValueError, PasswordValidationError) as e:
            click.echo(f"FAIL Failed to create admin: {e}")

    click.echo("DONE System initialized")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.confirm("This deletes ALL data. Continue?", abort=True)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


# =============================================================================
# TENANTS / USERS / CUSTOMERS
# =============================================================================

@click.group('tenants')
def tenants_group():
    """Tenant management."""


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_tenant_cli(name, code):
    """Create a new tenant (distributor)."""
    if db.session.query(Tenant).filter_by(code=code).first():
        click.echo(f"FAIL Tenant with code '{code}' already exists")
        return

    tenant = Tenant(name=name, code=code, is_active=True)
    db.session.add(tenant)
    db.session.commit()
    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")


@click.group('users')
def users_group():
    """User management."""


@users_group.command('create')
@click.option('--tenant-code', required=True, help='Tenant code')
@click.option('--username', prompt=True, help='Username')
@click.option('--name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@click.option('--phone', default=None, help='Phone number')
@click.option('--vehicle', default=None, help='Vehicle number (drivers)')
@with_appcontext
def create_user_cli(tenant_code, username, name, password, role, phone, vehicle):
    """Create a user inside a tenant."""
    tenant = _tenant_by_code(tenant_code)
    try:
        user = create_user(tenant.id, username, name, password, role, phone, vehicle)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        return
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {e}")
        return

    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}' in '{tenant.code}'")


@users_group.command('update')
@click.option('--tenant-code', required=True, help='Tenant code')
@click.option('--username', required=True, help='Username')
@click.option('--name', default=None, help='New display name')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), default=None, help='New role')
@click.option('--phone', default=None, help='New phone number')
@click.option('--vehicle', default=None, help='New vehicle number')
@with_appcontext
def update_user_cli(tenant_code, username, name, role, phone, vehicle):
    """Edit a user's profile. A role change logs the user out."""
    tenant = _tenant_by_code(tenant_code)
    user = _user_by_username(tenant, username)
    try:
        role_changed = update_user_profile(user, name=name, role=role, phone_number=phone, vehicle_number=vehicle)
    except ValueError as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        return

    revoked = revoke_all_user_sessions(user.id, reason="Role changed by admin") if role_changed else 0
    db.session.commit()
    click.echo(f"PASS Updated user: {user.username} (role '{user.role}', {revoked} session(s) revoked)")


@users_group.command('set-active')
@click.option('--tenant-code', required=True, help='Tenant code')
@click.option('--username', required=True, help='Username')
@click.option('--active/--inactive', required=True, help='Activate or deactivate the account')
@with_appcontext
def set_active_cli(tenant_code, username, active):
    """Activate or deactivate a user. Deactivation revokes every session."""
    tenant = _tenant_by_code(tenant_code)
    user = _user_by_username(tenant, username)
    if user.is_active == active:
        click.echo(f"WARN  User '{user.username}' is already {'active' if active else 'deactivated'}")
        return

    user.is_active = active
    revoked = 0 if active else revoke_all_user_sessions(user.id, reason="Account deactivated by admin")
    db.session.commit()
    click.echo(f"PASS User '{user.username}' {'activated' if active else 'deactivated'} ({revoked} session(s) revoked)")


@users_group.command('reset-password')
@click.option('--tenant-code', required=True, help='Tenant code')
@click.option('--username', required=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='New password')
@with_appcontext
def reset_password_cli(tenant_code, username, password):
    """Set a new password and log the user out everywhere."""
    tenant = _tenant_by_code(tenant_code)
    user = _user_by_username(tenant, username)
    try:
        set_user_password(user, password, rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    except PasswordValidationError as e:
        db.session.rollback()
        click.echo(f"FAIL Password validation failed: {e}")
        return

    revoked = revoke_all_user_sessions(user.id, reason="Password reset by admin")
    db.session.commit()
    click.echo(f"PASS Password reset for {user.username} ({revoked} session(s) revoked)")


@click.group('customers')
def customers_group():
    """Customer management."""


@customers_group.command('create')
@click.option('--tenant-code', required=True, help='Tenant code')
@click.option('--name', required=True, help='Customer name')
@click.option('--phone', default=None)
@click.option('--address', default=None)
@with_appcontext
def create_customer_cli(tenant_code, name, phone, address):
    tenant = _tenant_by_code(tenant_code)
    customer = Customer(tenant_id=tenant.id, name=name, phone=phone, address=address)
    db.session.add(customer)
    db.session.commit()
    click.echo(f"PASS Created customer: {customer.name} (ID: {customer.id})")


# =============================================================================
# CYLINDERS
# =============================================================================

@click.group('cylinders')
def cylinders_group():
    """Cylinder intake, truck loading and hold recovery."""


@cylinders_group.command('intake')
@click.option('--tenant-code', required=True, help='Tenant code')
@click.option('--size', required=True, help='Cylinder size, e.g. 11.8kg')
@click.argument('serials', nargs=-1, required=True)
@with_appcontext
def intake_cli(tenant_code, size, serials):
    """Register new full cylinders in the warehouse."""
    tenant = _tenant_by_code(tenant_code)
    created = 0
    for serial in asset_service.normalize_serials(serials):
        try:
            asset_service.intake_cylinder(tenant.id, serial, size)
            db.session.commit()
            created += 1
        except AssetError as e:
            db.session.rollback()
            click.echo(f"WARN  {e}")
    click.echo(f"PASS {created} cylinder(s) added to the warehouse")


@cylinders_group.command('load')
@click.option('--tenant-code', required=True, help='Tenant code')
@click.option('--driver', 'driver_username', required=True, help='Driver username')
@click.option('--order-id', type=int, default=None, help='Link the cylinders to this order')
@click.argument('serials', nargs=-1, required=True)
@with_appcontext
def load_cli(tenant_code, driver_username, order_id, serials):
    """Load full warehouse cylinders onto a driver's truck."""
    tenant = _tenant_by_code(tenant_code)
    driver = _driver_by_username(tenant, driver_username)
    loaded = asset_service.load_driver(tenant.id, driver.id, serials, order_id=order_id)
    db.session.commit()

    requested = len(asset_service.normalize_serials(serials))
    if loaded != requested:
        click.echo(f"WARN  Only {loaded} of {requested} cylinder(s) were full and in the warehouse")
    click.echo(f"PASS Loaded {loaded} cylinder(s) onto {driver.username}'s truck")


@cylinders_group.command('release-holds')
@click.option('--tenant-code', required=True, help='Tenant code')
@click.option('--driver', 'driver_username', required=True, help='Driver username')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def release_holds_cli(tenant_code, driver_username, yes):
    """
    Return a driver's handover_pending cylinders to the truck as empties.

    Use after a handover request failed to record and left cylinders locked.
    """
    tenant = _tenant_by_code(tenant_code)
    driver = _driver_by_username(tenant, driver_username)
    held = asset_service.held_serials(tenant.id, driver.id)
    if not held:
        click.echo("PASS No cylinders on hold")
        return

    click.echo(f"INFO On hold: {', '.join(held)}")
    if not yes:
        click.confirm("Release these cylinders back to the driver?", abort=True)

    released = asset_service.release_hold(tenant.id, driver.id)
    db.session.commit()
    click.echo(f"PASS Released {released} cylinder(s)")


# =============================================================================
# ORDERS
# =============================================================================

def _parse_item(value: str) -> tuple[str, int]:
    name, sep, qty = value.rpartition(":")
    if not sep or not name:
        raise click.BadParameter(f"Item must look like 'product:qty', got '{value}'")
    try:
        quantity = int(qty)
    except ValueError:
        raise click.BadParameter(f"Quantity must be an integer in '{value}'")
    if quantity <= 0:
        raise click.BadParameter(f"Quantity must be positive in '{value}'")
    return name, quantity


@click.group('orders')
def orders_group():
    """Order dispatch."""


@orders_group.command('create')
@click.option('--tenant-code', required=True, help='Tenant code')
@click.option('--customer-id', type=int, required=True)
@click.option('--driver', 'driver_username', required=True, help='Driver username')
@click.option('--total-cents', type=int, required=True, help='Total amount due in cents')
@click.option('--friendly-id', default=None, help='Human-readable order number')
@click.option('--item', 'items', multiple=True, required=True, help="product:qty (repeatable)")
@with_appcontext
def create_order_cli(tenant_code, customer_id, driver_username, total_cents, friendly_id, items):
    """Create an order assigned to a driver."""
    tenant = _tenant_by_code(tenant_code)
    driver = _driver_by_username(tenant, driver_username)
    customer = db.session.query(Customer).filter_by(id=customer_id, tenant_id=tenant.id).first()
    if not customer:
        raise click.ClickException(f"Customer {customer_id} not found in tenant '{tenant.code}'")
    if total_cents < 0:
        raise click.BadParameter("Total must be >= 0")
    parsed_items = [_parse_item(item) for item in items]

    order = Order(
        tenant_id=tenant.id,
        friendly_id=friendly_id,
        customer_id=customer.id,
        driver_id=driver.id,
        total_amount_cents=total_cents,
    )
    db.session.add(order)
    db.session.flush()
    for name, quantity in parsed_items:
        db.session.add(OrderItem(order_id=order.id, product_name=name, quantity=quantity))
    db.session.commit()

    click.echo(f"PASS Created order #{order.display_id} (ID: {order.id}) for {customer.name}, driver {driver.username}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(users_group)
    app.cli.add_command(customers_group)
    app.cli.add_command(cylinders_group)
    app.cli.add_command(orders_group)
