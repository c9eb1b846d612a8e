# Overview: Pytest coverage for purchase orders, inbound stock and supplier payables.

from decimal import Decimal

import pytest
from app.extensions import db
from app.models import Item, PurchaseOrder, StockMovement
from app.models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_INBOUND, MOVEMENT_REVERSAL
from app.models.purchasing import RECEIPT_APPROVED, RECEIPT_CANCELLED, RECEIPT_COMPLETED, RECEIPT_PENDING
from app.models.sales import SETTLEMENT_PARTIAL, SETTLEMENT_SETTLED
from app.models.settlement import DIRECTION_OWED_BY_SHOP, ORIGIN_REVERSED, RECEIVABLE_PAID
from app.services import purchase_service, sales_service, settlement_ledger, stock_ledger
from app.services.errors import InsufficientStock, InvalidArgument, NotFound
from app.time_utils import today


def _received_po(item, supplier, **kwargs):
    params = {
        "supplier_id": supplier.id,
        "receipt_status": RECEIPT_COMPLETED,
        "paid_amount": 5000,
        "actor_user_id": 7,
    }
    params.update(kwargs)
    return purchase_service.create_purchase_order(
        [{"item_id": item.id, "quantity": 20, "unit_price": 600}],
        **params,
    )


class TestCreatePurchaseOrder:
    def test_completed_order_receives_stock_and_derives_payable(self, db_session, item, supplier, events):
        po = _received_po(item, supplier)

        assert stock_ledger.snapshot(item.id) == Decimal("70")
        assert po.is_received
        assert po.final_amount == Decimal("12000")
        assert po.settlement_status == SETTLEMENT_PARTIAL

        payable = po.payable
        assert payable.direction == DIRECTION_OWED_BY_SHOP
        assert payable.supplier_id == supplier.id
        assert payable.origin_label == po.label
        assert payable.outstanding_balance == Decimal("7000")

        movement = db_session.query(StockMovement).filter_by(item_id=item.id).one()
        assert movement.change_type == MOVEMENT_INBOUND
        assert movement.reason == po.label
        assert events.kinds() == ["purchase.created"]

    def test_pending_order_does_not_touch_stock(self, db_session, item, supplier):
        po = _received_po(item, supplier, receipt_status=RECEIPT_PENDING)

        assert not po.is_received
        assert stock_ledger.snapshot(item.id) == Decimal("50")
        assert db_session.query(StockMovement).count() == 0

    def test_generated_po_number(self, db_session, item, supplier):
        first = _received_po(item, supplier, receipt_status=RECEIPT_PENDING)
        second = _received_po(item, supplier, receipt_status=RECEIPT_PENDING)

        prefix = f"PO-{today().strftime('%Y%m%d')}-"
        assert first.po_number == f"{prefix}0001"
        assert second.po_number == f"{prefix}0002"
        assert first.label == f"Purchase {first.po_number}"

    def test_duplicate_po_number_rejected(self, db_session, item, supplier):
        _received_po(item, supplier, po_number="PO-A")
        with pytest.raises(InvalidArgument):
            _received_po(item, supplier, po_number="PO-A")

    def test_po_number_not_reused_after_delete(self, db_session, item, supplier):
        first = _received_po(item, supplier, receipt_status=RECEIPT_PENDING)
        second = _received_po(item, supplier, receipt_status=RECEIPT_PENDING)
        purchase_service.delete_purchase_order(first.id)

        third = _received_po(item, supplier, receipt_status=RECEIPT_PENDING)

        prefix = f"PO-{today().strftime('%Y%m%d')}-"
        assert second.po_number == f"{prefix}0002"
        assert third.po_number == f"{prefix}0003"

    def test_po_number_skips_manual_gaps(self, db_session, item, supplier):
        prefix = f"PO-{today().strftime('%Y%m%d')}-"
        _received_po(item, supplier, receipt_status=RECEIPT_PENDING, po_number=f"{prefix}0007")

        generated = _received_po(item, supplier, receipt_status=RECEIPT_PENDING)
        assert generated.po_number == f"{prefix}0008"
        assert db_session.query(PurchaseOrder).count() == 1
        assert stock_ledger.snapshot(item.id) == Decimal("70")

    def test_supplier_required(self, db_session, item):
        with pytest.raises(InvalidArgument):
            purchase_service.create_purchase_order([{"item_id": item.id, "quantity": 1}], supplier_id=None)

    def test_unknown_supplier(self, db_session, item):
        with pytest.raises(NotFound):
            purchase_service.create_purchase_order([{"item_id": item.id, "quantity": 1}], supplier_id=404)

    def test_unit_price_defaults_to_item_cost(self, db_session, item, supplier):
        po = purchase_service.create_purchase_order(
            [{"item_id": item.id, "quantity": 2}],
            supplier_id=supplier.id,
        )
        assert po.lines[0].unit_price == Decimal("600")
        assert po.final_amount == Decimal("1200")
        assert po.settlement_status == SETTLEMENT_SETTLED
        assert po.payable is None


class TestReceiptStatus:
    def test_first_completion_receives_stock_once(self, db_session, item, supplier, events):
        po = _received_po(item, supplier, receipt_status=RECEIPT_PENDING)

        purchase_service.set_receipt_status(po.id, RECEIPT_APPROVED)
        purchase_service.set_receipt_status(po.id, "completed")
        purchase_service.set_receipt_status(po.id, RECEIPT_COMPLETED)

        assert stock_ledger.snapshot(item.id) == Decimal("70")
        assert db_session.query(StockMovement).count() == 1
        assert events.kinds()[1:] == ["purchase.status_changed", "purchase.received", "purchase.status_changed"]

    def test_received_order_cannot_go_back(self, db_session, item, supplier):
        po = _received_po(item, supplier)
        with pytest.raises(InvalidArgument):
            purchase_service.set_receipt_status(po.id, RECEIPT_PENDING)
        with pytest.raises(InvalidArgument):
            purchase_service.set_receipt_status(po.id, RECEIPT_CANCELLED)

    def test_cancelled_order_cannot_complete(self, db_session, item, supplier):
        po = _received_po(item, supplier, receipt_status=RECEIPT_PENDING)
        purchase_service.set_receipt_status(po.id, RECEIPT_CANCELLED)

        with pytest.raises(InvalidArgument):
            purchase_service.set_receipt_status(po.id, RECEIPT_COMPLETED)
        assert stock_ledger.snapshot(item.id) == Decimal("50")

    def test_unknown_receipt_status(self, db_session, item, supplier):
        po = _received_po(item, supplier, receipt_status=RECEIPT_PENDING)
        with pytest.raises(InvalidArgument):
            purchase_service.set_receipt_status(po.id, "SHIPPED")


class TestPurchaseSettlement:
    def test_settle_closes_payable(self, db_session, item, supplier):
        po = _received_po(item, supplier)

        purchase_service.set_purchase_settlement(po.id, SETTLEMENT_SETTLED)

        assert po.settlement_status == SETTLEMENT_SETTLED
        assert po.paid_amount == Decimal("12000")
        assert po.payable.status == RECEIVABLE_PAID

    def test_installment_on_payable_syncs_order(self, db_session, item, supplier):
        po = _received_po(item, supplier)
        settlement_ledger.record_installment(po.payable.id, 7000)

        assert po.settlement_status == SETTLEMENT_SETTLED
        assert po.paid_amount == Decimal("12000")


class TestEditLineQuantity:
    def test_received_edit_applies_difference_only(self, db_session, item, supplier):
        po = _received_po(item, supplier)
        line_id = po.lines[0].id

        purchase_service.edit_line_quantity(po.id, line_id, 25)

        assert stock_ledger.snapshot(item.id) == Decimal("75")
        adjustment = (
            db_session.query(StockMovement)
            .filter_by(item_id=item.id, change_type=MOVEMENT_ADJUSTMENT)
            .one()
        )
        assert adjustment.quantity_delta == Decimal("5")
        assert po.final_amount == Decimal("15000")
        assert po.payable.principal == Decimal("15000")
        assert po.payable.outstanding_balance == Decimal("10000")

    def test_pending_edit_does_not_touch_stock(self, db_session, item, supplier):
        po = _received_po(item, supplier, receipt_status=RECEIPT_PENDING)
        purchase_service.edit_line_quantity(po.id, po.lines[0].id, 10)

        assert stock_ledger.snapshot(item.id) == Decimal("50")
        assert po.final_amount == Decimal("6000")
        assert po.payable.outstanding_balance == Decimal("1000")

    def test_total_below_paid_rejected_atomically(self, db_session, item, supplier):
        po = _received_po(item, supplier)
        line_id = po.lines[0].id

        with pytest.raises(InvalidArgument):
            purchase_service.edit_line_quantity(po.id, line_id, 5)

        db.session.expire_all()
        assert stock_ledger.snapshot(item.id) == Decimal("70")
        assert purchase_service.get_purchase_order(po.id).lines[0].quantity == Decimal("20")

    def test_unknown_line(self, db_session, item, supplier):
        po = _received_po(item, supplier)
        with pytest.raises(NotFound):
            purchase_service.edit_line_quantity(po.id, 9999, 3)

    def test_unchanged_quantity_is_noop(self, db_session, item, supplier):
        po = _received_po(item, supplier)
        purchase_service.edit_line_quantity(po.id, po.lines[0].id, 20)
        assert db_session.query(StockMovement).count() == 1


class TestDeletePurchaseOrder:
    def test_delete_received_order_reverses_stock(self, db_session, item, supplier):
        po = _received_po(item, supplier)
        po_id, payable_id = po.id, po.payable.id

        result = purchase_service.delete_purchase_order(po_id)

        db.session.expire_all()
        assert stock_ledger.snapshot(item.id) == Decimal("50")
        assert db_session.get(PurchaseOrder, po_id) is None
        assert result["removed"] == [{"item_id": item.id, "quantity": 20.0}]

        payable = settlement_ledger.get_receivable(payable_id)
        assert payable.purchase_order_id is None
        assert payable.origin_state == ORIGIN_REVERSED
        assert payable.outstanding_balance == Decimal("7000")

        reversal = db_session.query(StockMovement).filter_by(change_type=MOVEMENT_REVERSAL).one()
        assert reversal.quantity_delta == Decimal("-20")

    def test_delete_pending_order_leaves_stock(self, db_session, item, supplier):
        po = _received_po(item, supplier, receipt_status=RECEIPT_PENDING)
        result = purchase_service.delete_purchase_order(po.id, on_reversal="force_settle")

        assert result["removed"] == []
        assert stock_ledger.snapshot(item.id) == Decimal("50")
        assert settlement_ledger.get_receivable(result["receivable_id"]).status == RECEIVABLE_PAID

    def test_delete_refused_when_stock_already_sold(self, db_session, item, supplier):
        po = _received_po(item, supplier)
        sales_service.create_sale([{"item_id": item.id, "quantity": 60}])

        with pytest.raises(InsufficientStock):
            purchase_service.delete_purchase_order(po.id)

        db.session.expire_all()
        assert stock_ledger.snapshot(item.id) == Decimal("10")
        assert db_session.get(PurchaseOrder, po.id) is not None


@pytest.fixture
def lock_trail(monkeypatch):
    """Record item locks taken by the purchase checks and the stock writes after them."""
    trail = []
    real_lock = sales_service.lock_for_update
    real_apply = stock_ledger.apply_delta

    def recording_lock(query):
        trail.append(("lock", query.column_descriptions[0]["entity"]))
        return real_lock(query)

    def recording_apply(*args, **kwargs):
        trail.append(("apply", args[0]))
        return real_apply(*args, **kwargs)

    monkeypatch.setattr(sales_service, "lock_for_update", recording_lock)
    monkeypatch.setattr(stock_ledger, "apply_delta", recording_apply)
    return trail


def test_reversal_checks_stock_on_locked_items(db_session, item, supplier, lock_trail):
    po = _received_po(item, supplier)
    lock_trail.clear()

    purchase_service.delete_purchase_order(po.id)

    assert lock_trail[0] == ("lock", Item)
    assert ("apply", item.id) in lock_trail[1:]


def test_line_reduction_checks_stock_on_locked_item(db_session, item, supplier, lock_trail):
    po = _received_po(item, supplier, paid_amount=0)
    lock_trail.clear()

    purchase_service.edit_line_quantity(po.id, po.lines[0].id, 15)

    assert lock_trail == [("lock", Item), ("apply", item.id)]
    assert stock_ledger.snapshot(item.id) == Decimal("65")


def test_line_reduction_refused_when_stock_already_sold(db_session, item, supplier):
    po = _received_po(item, supplier, paid_amount=0)
    sales_service.create_sale([{"item_id": item.id, "quantity": 68}])

    with pytest.raises(InsufficientStock):
        purchase_service.edit_line_quantity(po.id, po.lines[0].id, 15)

    db.session.expire_all()
    assert stock_ledger.snapshot(item.id) == Decimal("2")
    assert purchase_service.get_purchase_order(po.id).lines[0].quantity == Decimal("20")
