# Overview: Concurrency safeguards; bounded retry and threaded oversell protection.

"""
Concurrency Tests

Unit tests for run_with_retry plus threaded tests against a file-backed
SQLite database (an in-memory database has a single shared connection, so
it cannot show two writers racing).
"""

import threading
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from app import create_app
from app.extensions import db
from app.models import ContainerPoolRow, ContainerSale, Item, Sale, StockMovement
from app.models.containers import CONTAINER_FILLED
from app.services import container_service, sales_service, stock_ledger
from app.services.concurrency import begin_unit_of_work, run_with_retry
from app.services.errors import (
    ConcurrencyConflict,
    DependencyUnavailable,
    InsufficientQuantity,
    InsufficientStock,
    InvalidArgument,
)


class TestRunWithRetry:
    def test_returns_result_first_try(self, app):
        assert run_with_retry(lambda: 42) == 42

    def test_retries_stale_data_then_succeeds(self, app):
        calls = []

        def op():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("version mismatch")
            return "ok"

        assert run_with_retry(op, attempts=3, backoff_base=0) == "ok"
        assert len(calls) == 3

    def test_exhausted_retries_raise_conflict(self, app):
        def op():
            raise OperationalError("UPDATE items", {}, Exception("database is locked"))

        with pytest.raises(ConcurrencyConflict) as exc:
            run_with_retry(op, attempts=2, backoff_base=0)
        assert exc.value.details == {"attempts": 2}

    def test_non_lock_operational_error_is_dependency_unavailable(self, app):
        calls = []

        def op():
            calls.append(1)
            raise OperationalError("SELECT 1", {}, Exception("unable to open database file"))

        with pytest.raises(DependencyUnavailable):
            run_with_retry(op, attempts=3, backoff_base=0)
        assert len(calls) == 1

    def test_domain_errors_are_not_retried(self, app):
        calls = []

        def op():
            calls.append(1)
            raise InvalidArgument("nope")

        with pytest.raises(InvalidArgument):
            run_with_retry(op, attempts=3, backoff_base=0)
        assert len(calls) == 1


class TestBeginUnitOfWork:
    def test_opens_transaction_on_fresh_session(self, app, db_session):
        db.session.remove()
        assert not db.session().in_transaction()

        begin_unit_of_work()

        assert db.session().in_transaction()
        db.session.rollback()

    def test_reuses_open_transaction(self, app, db_session, item):
        db.session.query(Item).count()
        begin_unit_of_work()
        assert db.session().in_transaction()
        db.session.rollback()

    def test_sale_on_fresh_session(self, app, db_session, item):
        item_id = item.id
        db.session.remove()

        sale = sales_service.create_sale([{"item_id": item_id, "quantity": 10}])

        assert sale.id is not None
        assert stock_ledger.snapshot(item_id) == Decimal("40")


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30, 'check_same_thread': False}},
        'CONCURRENCY_RETRY_BACKOFF': 0.01,
    })
    with app.app_context():
        db.create_all()
        item = Item(sku="CONCUR-1", name="Concurrent Item", quantity=Decimal("10"), price=Decimal("1000"))
        db.session.add(item)
        db.session.add(ContainerPoolRow(product_name="Water", capacity="20L", state=CONTAINER_FILLED, quantity=10))
        db.session.commit()
        app.config["ITEM_ID"] = item.id
        db.session.remove()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_threads(app, target, count):
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(count)

    def worker():
        with app.app_context():
            try:
                barrier.wait()
                value = target()
                with lock:
                    results.append(value)
            except Exception as exc:
                with lock:
                    results.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_concurrent_sales_never_oversell(file_app):
    item_id = file_app.config["ITEM_ID"]

    results = _run_threads(
        file_app,
        lambda: sales_service.create_sale([{"item_id": item_id, "quantity": 6}]).id,
        2,
    )

    committed = [r for r in results if isinstance(r, int)]
    rejected = [r for r in results if isinstance(r, (InsufficientStock, ConcurrencyConflict))]
    assert len(committed) == 1
    assert len(rejected) == 1

    with file_app.app_context():
        assert stock_ledger.snapshot(item_id) == Decimal("4")
        assert db.session.query(Sale).count() == 1
        assert db.session.query(StockMovement).count() == 1


def test_concurrent_container_sales_never_go_negative(file_app):
    results = _run_threads(
        file_app,
        lambda: container_service.create_container_sale("Water", "20L", 3, unit_price=1000).id,
        5,
    )

    committed = [r for r in results if isinstance(r, int)]
    assert len(committed) == 3
    assert all(isinstance(r, (InsufficientQuantity, ConcurrencyConflict)) for r in results if r not in committed)

    with file_app.app_context():
        rows = db.session.query(ContainerPoolRow).filter_by(state=CONTAINER_FILLED).all()
        assert [row.quantity for row in rows] == [1]
        assert db.session.query(ContainerSale).count() == 3
