# Overview: Pytest coverage for container sales (keep/swap) and container batches.

from decimal import Decimal

import pytest
from app.extensions import db
from app.models import ContainerBatch, ContainerPoolRow, ContainerSale
from app.models.containers import CONTAINER_EMPTY, CONTAINER_FILLED, CONTAINER_MAINTENANCE
from app.services import container_pool, container_service
from app.services.errors import InsufficientQuantity, InvalidArgument, NotFound


def _counts():
    db.session.expire_all()
    return (
        container_pool.available("Water", "20L", CONTAINER_FILLED),
        container_pool.available("Water", "20L", CONTAINER_EMPTY),
    )


class TestContainerSale:
    def test_swap_sale_moves_filled_to_empty(self, db_session, filled_pool, events):
        sale = container_service.create_container_sale(
            "Water", "20L", 5,
            includes_container=False,
            customer_brings_container=True,
            actor_user_id=7,
        )

        assert _counts() == (15, 5)
        assert not sale.keeps_container
        assert sale.batch_id == filled_pool.id
        assert sale.unit_price == Decimal("1000")
        assert sale.total_amount == Decimal("5000")
        assert events.kinds() == ["container_sale.created"]

    def test_keep_sale_only_reserves_filled(self, db_session, filled_pool):
        sale = container_service.create_container_sale(
            "Water", "20L", 2,
            includes_container=True,
            customer_brings_container=False,
        )

        assert _counts() == (18, 0)
        assert sale.keeps_container
        # resale price plus the container deposit
        assert sale.unit_price == Decimal("3500")

    def test_explicit_unit_price_wins(self, db_session, filled_pool):
        sale = container_service.create_container_sale("Water", "20L", 1, unit_price="900")
        assert sale.total_amount == Decimal("900")

    def test_insufficient_filled_containers(self, db_session, filled_pool):
        with pytest.raises(InsufficientQuantity):
            container_service.create_container_sale("Water", "20L", 21)
        assert _counts() == (20, 0)
        assert db_session.query(ContainerSale).count() == 0

    def test_unknown_product_without_price(self, db_session):
        with pytest.raises(InvalidArgument):
            container_service.create_container_sale("Juice", "1L", 1)

    def test_missing_capacity_rejected(self, db_session, filled_pool):
        with pytest.raises(InvalidArgument):
            container_service.create_container_sale("Water", "", 1, unit_price=100)

    def test_edit_swap_sale_applies_difference(self, db_session, filled_pool):
        sale = container_service.create_container_sale("Water", "20L", 5)

        container_service.edit_container_sale_quantity(sale.id, 8)
        assert _counts() == (12, 8)

        container_service.edit_container_sale_quantity(sale.id, 2)
        assert _counts() == (18, 2)
        assert sale.total_amount == Decimal("2000")

    def test_edit_keep_sale_applies_difference(self, db_session, filled_pool):
        sale = container_service.create_container_sale(
            "Water", "20L", 5, includes_container=True, customer_brings_container=False
        )
        container_service.edit_container_sale_quantity(sale.id, 3)
        assert _counts() == (17, 0)

    def test_delete_swap_sale_restores_pool(self, db_session, filled_pool):
        sale = container_service.create_container_sale("Water", "20L", 5)

        result = container_service.delete_container_sale(sale.id)

        assert result["mode"] == "swap"
        assert _counts() == (20, 0)
        assert db_session.query(ContainerPoolRow).filter_by(state=CONTAINER_EMPTY).count() == 0

    def test_delete_swap_sale_fails_when_empties_gone(self, db_session, filled_pool):
        sale = container_service.create_container_sale("Water", "20L", 5)
        container_service.move_containers("Water", "20L", CONTAINER_EMPTY, CONTAINER_MAINTENANCE, 3)

        with pytest.raises(InsufficientQuantity):
            container_service.delete_container_sale(sale.id)

        assert _counts() == (15, 2)
        assert db_session.get(ContainerSale, sale.id) is not None

    def test_delete_unknown_sale(self, db_session):
        with pytest.raises(NotFound):
            container_service.delete_container_sale(77)


class TestContainerBatch:
    def test_create_batch_releases_into_pool(self, db_session, events):
        batch = container_service.create_container_batch(
            "Water", "20L", 12,
            unit_cost="700",
            container_price="2500",
            unit_resale_price="1000",
            supplier_name="Source Pure SARL",
        )

        row = db_session.query(ContainerPoolRow).filter_by(state=CONTAINER_FILLED).one()
        assert row.quantity == 12
        assert row.batch_id == batch.id
        assert batch.total_cost == Decimal("8400")
        assert events.kinds() == ["container_batch.created"]

    def test_second_batch_tops_up_same_row(self, db_session, filled_pool):
        batch = container_service.create_container_batch("Water", "20L", 4, unit_resale_price=1100)

        rows = db_session.query(ContainerPoolRow).filter_by(state=CONTAINER_FILLED).all()
        assert len(rows) == 1
        assert rows[0].quantity == 24
        assert rows[0].batch_id == batch.id

    def test_empty_batch_state(self, db_session):
        container_service.create_container_batch("Water", "20L", 6, state="empty")
        assert _counts() == (0, 6)

    def test_unknown_batch_state_rejected(self, db_session):
        with pytest.raises(InvalidArgument):
            container_service.create_container_batch("Water", "20L", 6, state="lost")
        assert db_session.query(ContainerBatch).count() == 0

    def test_edit_batch_quantity(self, db_session, filled_pool):
        container_service.edit_container_batch_quantity(filled_pool.id, 25)
        assert _counts() == (25, 0)

        container_service.edit_container_batch_quantity(filled_pool.id, 10)
        assert _counts() == (10, 0)

    def test_edit_batch_below_what_was_sold(self, db_session, filled_pool):
        container_service.create_container_sale("Water", "20L", 15)
        with pytest.raises(InsufficientQuantity):
            container_service.edit_container_batch_quantity(filled_pool.id, 2)

    def test_delete_batch_with_sales_refused(self, db_session, filled_pool):
        container_service.create_container_sale("Water", "20L", 1)
        with pytest.raises(InvalidArgument):
            container_service.delete_container_batch(filled_pool.id)

    def test_delete_batch_removes_its_quantity(self, db_session):
        batch = container_service.create_container_batch("Water", "20L", 8, unit_resale_price=1000)
        container_service.create_container_batch("Water", "20L", 3, unit_resale_price=1000)

        result = container_service.delete_container_batch(batch.id)

        assert result["quantity"] == 8
        assert _counts() == (3, 0)
        assert db_session.get(ContainerBatch, batch.id) is None


def test_move_containers_for_refill(db_session, filled_pool, events):
    container_service.create_container_sale("Water", "20L", 5)

    result = container_service.move_containers("Water", "20L", "empty", "filled", 5, actor_user_id=7)

    assert result["from_remaining"] == 0
    assert result["to_quantity"] == 20
    assert _counts() == (20, 0)
    assert events.kinds()[-1] == "containers.moved"
