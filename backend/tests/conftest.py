"""
Pytest fixtures for delivery ERP backend tests.

Provides test database setup, party and cashbox fixtures, and test client.
"""

from decimal import Decimal

import pytest
from logistics import create_app
from logistics.extensions import db
from logistics.models import Client, Driver
from logistics.services import cashbox_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CASHBOX_STRICT_LEDGER': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app, db_session):
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
def cashbox(db_session):
    """Cashbox singleton with 1000 USD / 10,000,000 LBP on the cash account."""
    cashbox_service.ensure_cashbox()
    db_session.commit()
    return cashbox_service.set_capital(amount_usd=Decimal("1000.00"), amount_lbp=10_000_000)


@pytest.fixture(scope='function')
def driver(db_session):
    driver = Driver(full_name="Hadi Driver", phone="70000000", is_active=True)
    db_session.add(driver)
    db_session.commit()
    return driver


@pytest.fixture(scope='function')
def inactive_driver(db_session):
    driver = Driver(full_name="Former Driver", is_active=False)
    db_session.add(driver)
    db_session.commit()
    return driver


@pytest.fixture(scope='function')
def crm_client(db_session):
    client = Client(business_name="Cedar Boutique", contact_person="Maya", phone="71000000")
    db_session.add(client)
    db_session.commit()
    return client

