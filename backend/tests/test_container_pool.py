# Overview: Pytest coverage for the keyed container pool.

import pytest
from app.models import ContainerPoolRow
from app.models.containers import CONTAINER_EMPTY, CONTAINER_FILLED, CONTAINER_MAINTENANCE
from app.services import container_pool
from app.services.errors import InsufficientQuantity, InvalidArgument


def _rows(db_session, state):
    return db_session.query(ContainerPoolRow).filter_by(
        product_name="Water", capacity="20L", state=state
    ).all()


class TestReserveRelease:
    def test_reserve_decrements_and_reports_remaining(self, db_session, filled_pool):
        token = container_pool.reserve("Water", "20L", CONTAINER_FILLED, 5)
        db_session.commit()

        assert token.quantity == 5
        assert token.remaining == 15
        assert token.batch_id == filled_pool.id
        assert container_pool.available("Water", "20L") == 15

    def test_reserve_to_zero_deletes_row(self, db_session, filled_pool):
        token = container_pool.reserve("Water", "20L", "filled", 20)
        db_session.commit()

        assert token.remaining == 0
        assert _rows(db_session, CONTAINER_FILLED) == []

    def test_reserve_more_than_available_leaves_row_untouched(self, db_session, filled_pool):
        with pytest.raises(InsufficientQuantity) as exc:
            container_pool.reserve("Water", "20L", CONTAINER_FILLED, 21)

        assert exc.value.details["available"] == 20
        assert exc.value.details["requested_quantity"] == 21
        db_session.rollback()
        assert container_pool.available("Water", "20L") == 20

    def test_reserve_missing_key_counts_as_zero(self, db_session):
        with pytest.raises(InsufficientQuantity) as exc:
            container_pool.reserve("Juice", "1L", CONTAINER_FILLED, 1)
        assert exc.value.details["available"] == 0

    def test_release_creates_row_on_first_use(self, db_session):
        row = container_pool.release("Water", "20L", CONTAINER_EMPTY, 3)
        db_session.commit()

        assert row.quantity == 3
        assert row.batch_id is None
        assert len(_rows(db_session, CONTAINER_EMPTY)) == 1

    def test_release_adds_to_existing_row(self, db_session, filled_pool):
        container_pool.release("Water", "20L", CONTAINER_FILLED, 4)
        db_session.commit()

        rows = _rows(db_session, CONTAINER_FILLED)
        assert len(rows) == 1
        assert rows[0].quantity == 24
        assert rows[0].batch_id == filled_pool.id

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "two"])
    def test_non_positive_or_fractional_quantity_rejected(self, db_session, filled_pool, quantity):
        with pytest.raises(InvalidArgument):
            container_pool.reserve("Water", "20L", CONTAINER_FILLED, quantity)

    def test_unknown_state_rejected(self, db_session):
        with pytest.raises(InvalidArgument):
            container_pool.release("Water", "20L", "BROKEN", 1)

    def test_missing_product_rejected(self, db_session):
        with pytest.raises(InvalidArgument):
            container_pool.release("  ", "20L", CONTAINER_FILLED, 1)


class TestTransfer:
    def test_transfer_moves_between_states(self, db_session, filled_pool):
        token, row = container_pool.transfer("Water", "20L", CONTAINER_FILLED, CONTAINER_EMPTY, 5)
        db_session.commit()

        assert token.remaining == 15
        assert row.state == CONTAINER_EMPTY
        assert row.quantity == 5
        assert row.batch_id == filled_pool.id

    def test_transfer_to_same_state_rejected(self, db_session, filled_pool):
        with pytest.raises(InvalidArgument):
            container_pool.transfer("Water", "20L", "filled", CONTAINER_FILLED, 1)

    def test_transfer_conserves_total(self, db_session, filled_pool):
        container_pool.transfer("Water", "20L", CONTAINER_FILLED, CONTAINER_EMPTY, 7)
        container_pool.transfer("Water", "20L", CONTAINER_EMPTY, CONTAINER_MAINTENANCE, 2)
        db_session.commit()

        summary = container_pool.pool_summary()
        assert summary == [{
            "product_name": "Water",
            "capacity": "20L",
            "filled": 13,
            "empty": 5,
            "maintenance": 2,
            "total": 20,
        }]


class TestConsolidate:
    def test_consolidate_drops_zero_rows(self, db_session, filled_pool):
        db_session.add(ContainerPoolRow(product_name="Water", capacity="20L", state=CONTAINER_EMPTY, quantity=0))
        db_session.commit()

        removed = container_pool.consolidate()

        assert removed == 1
        assert _rows(db_session, CONTAINER_EMPTY) == []
        assert container_pool.available("Water", "20L") == 20

    def test_consolidate_is_noop_on_clean_pool(self, db_session, filled_pool):
        assert container_pool.consolidate() == 0


def test_available_products_carries_batch_prices(db_session, filled_pool):
    products = container_pool.available_products()

    assert len(products) == 1
    assert products[0]["available_quantity"] == 20
    assert products[0]["unit_resale_price"] == 1000.0
    assert products[0]["container_price"] == 2500.0
