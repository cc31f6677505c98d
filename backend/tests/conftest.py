"""
Pytest fixtures for stockcore backend tests.

Provides test database setup, two tenants with products, and a test client.
"""

import pytest

from stockcore import create_app
from stockcore.extensions import db
from stockcore.models import Tenant, User
from stockcore.services import stock_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCK_RETRY_BACKOFF': 0,
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

        app.config['VOID_PAYMENT_CHECK_FAIL_OPEN'] = False

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Create Tenant A."""
    tenant = Tenant(name="Tenant A - Acme Corp", code="ACME", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Create Tenant B."""
    tenant = Tenant(name="Tenant B - Beta Inc", code="BETA", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def user_a(db_session, tenant_a):
    """Ordering user in Tenant A."""
    user = User(tenant_id=tenant_a.id, full_name="Alice Buyer", email="alice@acme.com")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def product_a(db_session, tenant_a):
    """Product in Tenant A: 10 on hand, low at 5, $10.00, 8% tax."""
    return stock_service.create_product(
        tenant_id=tenant_a.id,
        sku="PROD-A-001",
        name="Product A",
        price_cents=1000,
        tax_rate_bps=800,
        quantity=10,
        minimum_stock_quantity=5,
    )


@pytest.fixture(scope='function')
def product_a2(db_session, tenant_a):
    """Second product in Tenant A: 20 on hand, no threshold, $5.00, no tax."""
    return stock_service.create_product(
        tenant_id=tenant_a.id,
        sku="PROD-A-002",
        name="Product A2",
        price_cents=500,
        tax_rate_bps=0,
        quantity=20,
    )


@pytest.fixture(scope='function')
def product_b(db_session, tenant_b):
    """Product in Tenant B."""
    return stock_service.create_product(
        tenant_id=tenant_b.id,
        sku="PROD-B-001",
        name="Product B",
        price_cents=2000,
        quantity=10,
    )


def tenant_headers(tenant_id: int, actor_id: int | None = None) -> dict:
    """Helper to build the upstream tenant/actor headers."""
    headers = {'X-Tenant-Id': str(tenant_id)}
    if actor_id is not None:
        headers['X-Actor-Id'] = str(actor_id)
    return headers


def quantity_of(product_id: int) -> int:
    """Current quantity read straight from the database."""
    from stockcore.models import Product
    db.session.expire_all()
    return db.session.get(Product, product_id).quantity
