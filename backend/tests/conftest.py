"""
Pytest fixtures for shop ledger backend tests.

Provides test database setup, seeded counterparties/items, a recording event
sink, and the test client.
"""

from datetime import date
from decimal import Decimal

import pytest
from app import create_app
from app.extensions import db
from app.models import Client, ContainerBatch, ContainerPoolRow, Item, Supplier
from app.models.containers import CONTAINER_FILLED
from app.services.event_sink import EventSink, install_event_sink


class RecordingSink(EventSink):
    """Keeps every notification in memory so tests can assert on them."""

    def __init__(self):
        self.events = []

    def notify(self, event_kind, entity_type, entity_id, actor_id, summary):
        self.events.append({
            "event_kind": event_kind,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "actor_id": actor_id,
            "summary": summary,
        })

    def kinds(self):
        return [e["event_kind"] for e in self.events]


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CONCURRENCY_RETRY_BACKOFF': 0,
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
def events(app):
    """Swap in a recording sink for the duration of a test."""
    previous = app.extensions.get("event_sink")
    sink = install_event_sink(app, RecordingSink())
    yield sink
    app.extensions["event_sink"] = previous


@pytest.fixture(scope='function')
def item(db_session):
    """Item with 50 on hand, low-stock threshold 5, catalog price 1000."""
    item = Item(
        sku="WATER-20L",
        name="Water 20L",
        quantity=Decimal("50"),
        previous_quantity=Decimal("50"),
        min_quantity=Decimal("5"),
        price=Decimal("1000"),
        cost=Decimal("600"),
    )
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def second_item(db_session):
    item = Item(
        sku="CUP-10",
        name="Paper cups (10)",
        quantity=Decimal("4"),
        previous_quantity=Decimal("4"),
        min_quantity=Decimal("2"),
        price=Decimal("250"),
        cost=Decimal("100"),
    )
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def shop_client(db_session):
    """Known counterparty for sales."""
    c = Client(name="Amina Diallo", phone="+221 77 000 00 00", email="amina@example.com")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def supplier(db_session):
    s = Supplier(name="Source Pure SARL", contact="Moussa", phone="+221 33 000 00 00")
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture(scope='function')
def filled_pool(db_session):
    """20 filled 20L water containers fed by one batch."""
    batch = ContainerBatch(
        product_name="Water",
        capacity="20L",
        state=CONTAINER_FILLED,
        quantity_acquired=20,
        unit_cost=Decimal("700"),
        container_price=Decimal("2500"),
        unit_resale_price=Decimal("1000"),
        supplier_name="Source Pure SARL",
        acquired_on=date(2026, 1, 15),
    )
    db_session.add(batch)
    db_session.flush()
    db_session.add(ContainerPoolRow(
        product_name="Water",
        capacity="20L",
        state=CONTAINER_FILLED,
        quantity=20,
        batch_id=batch.id,
    ))
    db_session.commit()
    return batch


@pytest.fixture(scope='function')
def actor_headers():
    """Headers the upstream auth layer forwards (user 7)."""
    return {'X-User-Id': '7'}
