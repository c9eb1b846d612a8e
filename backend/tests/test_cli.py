# Overview: Pytest coverage for the maintenance CLI commands.

from datetime import timedelta

from app.models import ContainerPoolRow
from app.models.containers import CONTAINER_EMPTY
from app.models.settlement import RECEIVABLE_OVERDUE
from app.services import sales_service, settlement_ledger


def test_pool_summary_prints_counts(app, db_session, filled_pool):
    result = app.test_cli_runner().invoke(args=["pool", "summary"])

    assert result.exit_code == 0
    assert "Water" in result.output
    assert "20" in result.output


def test_pool_summary_empty(app, db_session):
    result = app.test_cli_runner().invoke(args=["pool", "summary"])
    assert "No containers in the pool." in result.output


def test_pool_consolidate_reports_removed_rows(app, db_session, filled_pool):
    db_session.add(ContainerPoolRow(product_name="Water", capacity="20L", state=CONTAINER_EMPTY, quantity=0))
    db_session.commit()

    result = app.test_cli_runner().invoke(args=["pool", "consolidate"])

    assert result.exit_code == 0
    assert "1 rows removed" in result.output


def test_refresh_overdue(app, db_session, item, shop_client):
    sale = sales_service.create_sale(
        [{"item_id": item.id, "quantity": 1}],
        client_id=shop_client.id,
        paid_amount=0,
    )
    receivable_id = sale.receivable.id
    as_of = (sale.receivable.due_date + timedelta(days=1)).isoformat()

    result = app.test_cli_runner().invoke(args=["receivables", "refresh-overdue", "--as-of", as_of])

    assert result.exit_code == 0
    assert "1 receivable(s) marked overdue" in result.output
    db_session.expire_all()
    assert settlement_ledger.get_receivable(receivable_id).status == RECEIVABLE_OVERDUE


def test_refresh_overdue_rejects_bad_date(app, db_session):
    result = app.test_cli_runner().invoke(args=["receivables", "refresh-overdue", "--as-of", "31/01/2026"])
    assert result.exit_code != 0
