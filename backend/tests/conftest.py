"""
Pytest fixtures for partsdesk backend tests.

Provides an in-memory database, a test client, catalog fixtures and
identity-header helpers for each kind of caller.
"""

import pytest

from partsdesk import create_app
from partsdesk.config import Config
from partsdesk.extensions import db, notifications
from partsdesk.identity import Actor, ROLE_ADMIN, ROLE_CUSTOMER
from partsdesk.models import Product
from partsdesk.services import ledger_service


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    RESERVATION_SWEEPER_ENABLED = False
    NOTIFICATION_WEBHOOK_URL = None


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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


@pytest.fixture(scope='function')
def events(app):
    """Collect every notification published during the test."""
    subscription_id, q = notifications.subscribe()
    collected = []

    def drain():
        while not q.empty():
            collected.append(q.get_nowait())
        return collected

    yield drain
    notifications.unsubscribe(subscription_id)


def _create_product(db_session, *, sku="BRK-001", name="Brake pad", stock=10, min_stock=1,
                    retail=2500, wholesale=2000, is_active=True):
    """Create a product and ledger its opening stock like the CLI does."""
    product = Product(
        sku=sku,
        name=name,
        stock=0,
        min_stock=min_stock,
        retail_price_cents=retail,
        wholesale_price_cents=wholesale,
        is_active=is_active,
    )
    db_session.add(product)
    db_session.commit()
    if stock:
        ledger_service.apply_stock_movement(
            product_id=product.id,
            movement_type="IN",
            quantity=stock,
            reason="Opening stock",
        )
        db_session.commit()
    return product


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for extra products: make_product(sku=..., stock=..., ...)."""
    def _make(**kwargs):
        return _create_product(db_session, **kwargs)
    return _make


@pytest.fixture(scope='function')
def product(db_session):
    """Active product with 10 units, retail 25.00 / wholesale 20.00."""
    return _create_product(db_session)


@pytest.fixture
def admin():
    return Actor(user_id="admin-1", role=ROLE_ADMIN)


@pytest.fixture
def customer():
    return Actor(user_id="cust-1", role=ROLE_CUSTOMER)


@pytest.fixture
def other_customer():
    return Actor(user_id="cust-2", role=ROLE_CUSTOMER)


@pytest.fixture
def wholesale_customer():
    return Actor(user_id="cust-w", role=ROLE_CUSTOMER, customer_tier="WHOLESALE")


@pytest.fixture
def unapproved_customer():
    return Actor(user_id="cust-p", role=ROLE_CUSTOMER, approval_status="PENDING")


def identity_headers(user_id: str, role: str, status: str = "APPROVED", tier: str = "RETAIL") -> dict:
    """Helper to create trusted gateway identity headers."""
    return {
        "X-User-Id": user_id,
        "X-User-Role": role,
        "X-User-Status": status,
        "X-Customer-Tier": tier,
    }


@pytest.fixture
def admin_headers():
    return identity_headers("admin-1", "ADMIN")


@pytest.fixture
def customer_headers():
    return identity_headers("cust-1", "CUSTOMER")


@pytest.fixture
def other_customer_headers():
    return identity_headers("cust-2", "CUSTOMER")


@pytest.fixture
def unapproved_headers():
    return identity_headers("cust-p", "CUSTOMER", status="PENDING")
