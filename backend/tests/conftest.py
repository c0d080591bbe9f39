"""
Pytest fixtures for trade ledger backend tests.

Provides the in-memory app, a clean database per test, catalog/party
fixtures and the actor header used by write routes.
"""

import pytest

from tradeledger import create_app
from tradeledger.extensions import db
from tradeledger.models import Party, Product, Warehouse
from tradeledger.models.catalog import PRODUCT_TYPE_SERVICE
from tradeledger.models.parties import PARTY_CUSTOMER, PARTY_SUPPLIER
from tradeledger.services import stock_service

ACTOR = "tester"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_BACKOFF': 0.0,
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
def actor_headers():
    return {"X-User-Id": ACTOR}


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
def warehouse(db_session):
    w = Warehouse(code="MAIN", name="Main warehouse", is_main=True)
    db_session.add(w)
    db_session.commit()
    return w


@pytest.fixture(scope='function')
def second_warehouse(db_session):
    w = Warehouse(code="ANNEX", name="Annex")
    db_session.add(w)
    db_session.commit()
    return w


@pytest.fixture(scope='function')
def product(db_session):
    p = Product(sku="RICE-25", name="Rice 25kg", cost_cents=1_000, price_cents=1_500, min_stock_alert=2)
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def service_product(db_session):
    p = Product(sku="DELIVERY", name="Delivery", product_type=PRODUCT_TYPE_SERVICE, price_cents=500)
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def customer(db_session):
    c = Party(party_type=PARTY_CUSTOMER, name="Boutique Awa")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def supplier(db_session):
    s = Party(party_type=PARTY_SUPPLIER, name="Grossiste Diallo")
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture(scope='function')
def stock_in(db_session):
    """Put units on hand through the stock ledger."""
    def _stock_in(product, warehouse, quantity):
        stock_service.adjust_stock(
            product_id=product.id,
            warehouse_id=warehouse.id,
            direction=stock_service.ADJUST_ADDITION,
            quantity=quantity,
            reason="opening stock",
            actor_id=ACTOR,
        )
    return _stock_in
