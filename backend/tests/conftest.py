"""
Pytest fixtures for stock ledger tests.

Provides test database setup, two tenants with outlets and products, a
stock helper, and a test client with tenant headers.
"""

import pytest
from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Organization, Outlet, Product
from stockledger.services.movement_service import adjust_stock


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_BACKOFF_SECONDS': 0,
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


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Corp", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Inc", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def outlet_a(db_session, org_a):
    """Main outlet of Organization A (8.25% tax)."""
    outlet = Outlet(org_id=org_a.id, name="Downtown", code="A1", tax_rate_bps=825)
    db_session.add(outlet)
    db_session.commit()
    return outlet


@pytest.fixture(scope='function')
def outlet_b(db_session, org_a):
    """Second outlet of Organization A (no tax)."""
    outlet = Outlet(org_id=org_a.id, name="Uptown", code="A2", tax_rate_bps=0)
    db_session.add(outlet)
    db_session.commit()
    return outlet


@pytest.fixture(scope='function')
def foreign_outlet(db_session, org_b):
    """Outlet belonging to Organization B."""
    outlet = Outlet(org_id=org_b.id, name="Beta Store", code="B1")
    db_session.add(outlet)
    db_session.commit()
    return outlet


@pytest.fixture(scope='function')
def product_p(db_session, org_a):
    product = Product(org_id=org_a.id, sku="SKU-P", name="Product P", price_cents=1000)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_q(db_session, org_a):
    product = Product(org_id=org_a.id, sku="SKU-Q", name="Product Q", price_cents=250)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def foreign_product(db_session, org_b):
    product = Product(org_id=org_b.id, sku="SKU-B", name="Beta Product", price_cents=500)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def stock(db_session, org_a):
    """Seed available stock for Organization A with a positive adjustment."""
    def _stock(outlet, product, quantity):
        result = adjust_stock(
            org_id=org_a.id,
            outlet_id=outlet.id,
            product_id=product.id,
            delta=quantity,
            reason="Opening stock",
        )
        return result.entry
    return _stock


@pytest.fixture(scope='function')
def headers(org_a):
    """Gateway headers for Organization A, actor 7."""
    return {"X-Organization-Id": str(org_a.id), "X-Actor-Id": "7"}
