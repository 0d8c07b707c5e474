"""
Pytest fixtures for LPG dispatch backend tests.

Provides an in-memory app, per-test table wipe, two tenants with drivers,
staff, customers, and factories for cylinders, orders and auth headers.
"""

import pytest

from lpg_dispatch import create_app
from lpg_dispatch.extensions import db
from lpg_dispatch.models import Tenant, User, Customer, Cylinder, Order, OrderItem
from lpg_dispatch.models.auth import ROLE_ADMIN, ROLE_CASHIER, ROLE_DRIVER
from lpg_dispatch.models.cylinders import CYLINDER_FULL, LOCATION_DRIVER
from lpg_dispatch.models.orders import ORDER_ASSIGNED
from lpg_dispatch.services import ledger_service
from lpg_dispatch.services.auth_service import hash_password
from lpg_dispatch.services.session_service import create_session
from lpg_dispatch.services.tenant_service import ActorContext


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    upload_dir = tmp_path_factory.mktemp("receipts")
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PROOF_UPLOAD_DIR': str(upload_dir),
        'LOG_LEVEL': 'WARNING',
        'BCRYPT_ROUNDS': 4,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# TENANTS AND USERS
# =============================================================================

@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Tenant A (first distributor)."""
    tenant = Tenant(name="North Gas", code="NORTH", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Tenant B (second distributor)."""
    tenant = Tenant(name="South Gas", code="SOUTH", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


def _make_user(db_session, tenant, username, role, name=None):
    user = User(
        tenant_id=tenant.id,
        username=username,
        name=name or username.title(),
        role=role,
        password_hash=hash_password(TEST_PASSWORD, rounds=4),
        vehicle_number="LEA-100" if role == ROLE_DRIVER else None,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def driver_a(db_session, tenant_a):
    return _make_user(db_session, tenant_a, "driver_a", ROLE_DRIVER, "Asad Driver")


@pytest.fixture(scope='function')
def driver_a2(db_session, tenant_a):
    return _make_user(db_session, tenant_a, "driver_a2", ROLE_DRIVER, "Bilal Driver")


@pytest.fixture(scope='function')
def admin_a(db_session, tenant_a):
    return _make_user(db_session, tenant_a, "admin_a", ROLE_ADMIN, "Zara Admin")


@pytest.fixture(scope='function')
def cashier_a(db_session, tenant_a):
    return _make_user(db_session, tenant_a, "cashier_a", ROLE_CASHIER, "Kamran Cashier")


@pytest.fixture(scope='function')
def driver_b(db_session, tenant_b):
    return _make_user(db_session, tenant_b, "driver_b", ROLE_DRIVER, "Other Driver")


@pytest.fixture(scope='function')
def admin_b(db_session, tenant_b):
    return _make_user(db_session, tenant_b, "admin_b", ROLE_ADMIN, "Other Admin")


def actor_for(user) -> ActorContext:
    return ActorContext(actor_id=user.id, tenant_id=user.tenant_id, role=user.role)


@pytest.fixture(scope='function')
def driver_actor(driver_a):
    return actor_for(driver_a)


@pytest.fixture(scope='function')
def admin_actor(admin_a):
    return actor_for(admin_a)


@pytest.fixture(scope='function')
def cashier_actor(cashier_a):
    return actor_for(cashier_a)


# =============================================================================
# CUSTOMERS, CYLINDERS, ORDERS
# =============================================================================

@pytest.fixture(scope='function')
def customer_a(db_session, tenant_a):
    customer = Customer(tenant_id=tenant_a.id, name="Hotel Shalimar", phone="0300-1111111", address="Mall Road")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, tenant_b):
    customer = Customer(tenant_id=tenant_b.id, name="Cafe South", phone="0300-2222222")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def make_cylinders(db_session):
    """
    Factory: create cylinders for a holder.

    make_cylinders(tenant, ["SN-1", "SN-2"], holder_id=driver.id)
    """
    def _make(tenant, serials, holder_id=None, status=CYLINDER_FULL, location=LOCATION_DRIVER,
              last_order_id=None, size="11.8kg"):
        cylinders = []
        for serial in serials:
            cylinder = Cylinder(
                tenant_id=tenant.id,
                serial_number=serial,
                size=size,
                status=status,
                current_location_type=location,
                current_holder_id=holder_id,
                last_order_id=last_order_id,
            )
            db_session.add(cylinder)
            cylinders.append(cylinder)
        db_session.commit()
        return cylinders
    return _make


@pytest.fixture(scope='function')
def make_order(db_session):
    """
    Factory: create an order with one line.

    make_order(tenant, customer, driver, total_cents=5000, quantity=2)
    """
    def _make(tenant, customer, driver, total_cents=5000, quantity=2, status=ORDER_ASSIGNED,
              friendly_id=None):
        order = Order(
            tenant_id=tenant.id,
            friendly_id=friendly_id,
            customer_id=customer.id,
            driver_id=driver.id,
            total_amount_cents=total_cents,
            status=status,
        )
        db_session.add(order)
        db_session.flush()
        if quantity:
            db_session.add(OrderItem(order_id=order.id, product_name="11.8kg Domestic", quantity=quantity))
        db_session.commit()
        return order
    return _make


@pytest.fixture(scope='function')
def fund_wallet(db_session):
    """Factory: put cash in a driver's wallet."""
    def _fund(driver, amount_cents):
        ledger_service.credit_driver_wallet(driver.tenant_id, driver.id, amount_cents)
        db_session.commit()
    return _fund


def get_cylinder(serial_number, tenant_id):
    db.session.expire_all()
    return db.session.query(Cylinder).filter_by(serial_number=serial_number, tenant_id=tenant_id).one()


# =============================================================================
# AUTH HELPERS
# =============================================================================

def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def headers_for(db_session):
    """Factory: bearer headers for a user (session created directly)."""
    def _headers(user):
        _, token = create_session(user.id)
        return auth_headers(token)
    return _headers
