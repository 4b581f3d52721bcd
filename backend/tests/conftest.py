"""
Pytest fixtures for RepairFlow backend tests.

Provides test database setup, shop/customer fixtures, ticket factories and
test client. Time is pinned by passing explicit ``now=`` values.
"""

from datetime import datetime, timedelta

import pytest
from repairflow import create_app
from repairflow.extensions import db
from repairflow.models import Shop, Customer
from repairflow.services import ticket_service


T0 = datetime(2026, 1, 5, 10, 0, 0)

SCREEN_ITEMS = [
    {"type": "part", "description": "Screen", "quantity": 1, "unit_price": "180.00"},
    {"type": "labor", "description": "Install", "quantity": 1, "unit_price": "39.00"},
]

STAGES = ("DIAGNOSED", "IN_PROGRESS", "READY", "PICKED_UP")


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
def shop(db_session):
    """Shop with no tax override (uses DEFAULT_TAX_RATE 0.0825)."""
    shop = Shop(name="Downtown Fix", code="DT")
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def other_shop(db_session):
    shop = Shop(name="Uptown Fix", code="UP")
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def customer(db_session, shop):
    customer = Customer(shop_id=shop.id, first_name="Ada", last_name="Lovelace", phone="(555) 010-4477")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def make_ticket(shop, customer):
    """Factory: INTAKE ticket for the default customer."""
    def _make(**overrides):
        kwargs = {
            "shop_id": shop.id,
            "customer_id": customer.id,
            "device_type": "Phone",
            "device_brand": "Apple",
            "device_model": "iPhone 13",
            "repair_type": "screen",
            "issue_description": "Cracked screen",
            "performed_by": "tech-1",
            "now": T0,
        }
        kwargs.update(overrides)
        return ticket_service.create_ticket(**kwargs)
    return _make


@pytest.fixture(scope='function')
def pick_up():
    """Walk a ticket through every stage, one hour apart, starting at ``start``."""
    def _pick_up(ticket, start=T0):
        for i, stage in enumerate(STAGES, start=1):
            ticket = ticket_service.advance_ticket(ticket.id, stage, now=start + timedelta(hours=i))
        return ticket
    return _pick_up


@pytest.fixture(scope='function')
def picked_up_ticket(make_ticket, pick_up):
    """Screen repair picked up at T0 + 4h (90-day warranty)."""
    return pick_up(make_ticket())
