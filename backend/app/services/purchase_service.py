# Overview: Purchase orders; inbound stock, supplier payables and reversal.

"""
Purchase Service

Mirror of the sales service with inbound deltas.

RECEIPT FLOW:
- PENDING -> APPROVED -> COMPLETED, or CANCELLED before completion
- stock is received exactly once: when the order is created COMPLETED or first
  moves to COMPLETED (stock_received_at marks it)
- a received order cannot move back out of COMPLETED; deleting it is the
  reversal

SETTLEMENT:
- a payable (Receivable with direction OWED_BY_SHOP) is derived when
  paid < final; installments and status sync go through the settlement ledger
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import PurchaseOrder, PurchaseOrderLine, Supplier
from ..models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_INBOUND, MOVEMENT_REVERSAL
from ..models.purchasing import RECEIPT_CANCELLED, RECEIPT_COMPLETED, RECEIPT_PENDING, RECEIPT_STATUSES
from ..models.sales import SETTLEMENT_PARTIAL, SETTLEMENT_SETTLED
from app.time_utils import today, utcnow
from app.validation import clean_str, parse_date, parse_decimal
from . import settlement_ledger, stock_ledger
from .concurrency import begin_unit_of_work, lock_for_update, run_with_retry
from .errors import InsufficientStock, InvalidArgument, NotFound
from .event_sink import emit_event
from .sales_service import _money, load_items, normalize_status, parse_lines, resolve_amounts


def normalize_receipt_status(status) -> str:
    value = str(status or "").strip().upper()
    if value not in RECEIPT_STATUSES:
        raise InvalidArgument(
            "Unknown receipt status",
            details={"status": status, "allowed": sorted(RECEIPT_STATUSES)},
        )
    return value


def get_purchase_order(po_id: int, *, lock: bool = False) -> PurchaseOrder:
    query = db.session.query(PurchaseOrder).filter_by(id=po_id)
    if lock:
        query = lock_for_update(query)
    po = query.first()
    if po is None:
        raise NotFound("Purchase order not found", details={"purchase_order_id": po_id})
    return po


def _next_po_number(order_date) -> str:
    """
    PO-YYYYMMDD-NNNN; the sequence is per order date.

    Continues from the highest suffix in use, so numbers freed by a deleted
    order are never handed out again while a later one still exists.
    """
    prefix = f"PO-{order_date.strftime('%Y%m%d')}-"
    numbers = (
        db.session.query(PurchaseOrder.po_number)
        .filter(PurchaseOrder.po_number.like(f"{prefix}%"))
        .all()
    )
    highest = 0
    for (number,) in numbers:
        suffix = number[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:04d}"


def _receive_stock(po: PurchaseOrder, actor_user_id: int | None) -> None:
    for line in po.lines:
        stock_ledger.apply_delta(
            line.item_id,
            line.quantity,
            po.label,
            change_type=MOVEMENT_INBOUND,
            actor_user_id=actor_user_id,
        )
    po.stock_received_at = utcnow()


def _check_reversible(po: PurchaseOrder) -> None:
    """Received goods may already be sold on; refuse a reversal that would clamp."""
    requested: dict[int, Decimal] = {}
    for line in po.lines:
        requested[line.item_id] = requested.get(line.item_id, Decimal("0")) + Decimal(line.quantity)

    items = load_items([{"item_id": item_id} for item_id in requested])
    short = []
    for item_id, qty in requested.items():
        on_hand = Decimal(items[item_id].quantity or 0)
        if on_hand < qty:
            short.append({"item_id": item_id, "requested_quantity": float(qty), "on_hand": float(on_hand)})
    if short:
        raise InsufficientStock(
            "Received stock has already been used; cannot reverse purchase",
            details={"items": short},
        )


def _recompute_totals(po: PurchaseOrder) -> None:
    total = sum((Decimal(line.line_total) for line in po.lines), Decimal("0"))
    final = total - Decimal(po.discount or 0)
    if final < 0:
        raise InvalidArgument("Discount exceeds total", details={"total_amount": str(total)})
    po.total_amount = _money(total)
    po.final_amount = _money(final)


def create_purchase_order(
    lines,
    *,
    supplier_id: int | None,
    po_number: str | None = None,
    order_date=None,
    receipt_status: str | None = None,
    settlement_status: str | None = None,
    total_amount=None,
    discount=None,
    final_amount=None,
    paid_amount=None,
    actor_user_id: int | None = None,
) -> PurchaseOrder:
    if supplier_id is None:
        raise InvalidArgument("supplier_id is required")

    parsed = parse_lines(lines)
    receipt_status = normalize_receipt_status(receipt_status or RECEIPT_PENDING)
    requested_settlement = normalize_status(settlement_status) if settlement_status else None
    order_date = parse_date(order_date, "order_date", default=today())
    po_number = clean_str(po_number, max_length=64)

    def _op():
        begin_unit_of_work()
        supplier = db.session.query(Supplier).filter_by(id=supplier_id).first()
        if supplier is None:
            raise NotFound("Supplier not found", details={"supplier_id": supplier_id})

        number = po_number or _next_po_number(order_date)
        if db.session.query(PurchaseOrder).filter_by(po_number=number).first() is not None:
            raise InvalidArgument("Duplicate po_number", details={"po_number": number})

        items = load_items(parsed)
        line_total_sum = Decimal("0")
        for line in parsed:
            if line["unit_price"] is None:
                line["resolved_price"] = Decimal(items[line["item_id"]].cost or 0)
            else:
                line["resolved_price"] = line["unit_price"]
            line_total_sum += line["quantity"] * line["resolved_price"]

        amounts = resolve_amounts(
            line_total_sum,
            total_amount=total_amount,
            discount=discount,
            final_amount=final_amount,
            paid_amount=paid_amount,
            status=requested_settlement,
        )

        po = PurchaseOrder(
            po_number=number,
            order_date=order_date,
            supplier_id=supplier.id,
            receipt_status=receipt_status,
            settlement_status=(
                SETTLEMENT_SETTLED
                if amounts["paid_amount"] >= amounts["final_amount"]
                else SETTLEMENT_PARTIAL
            ),
            created_by_user_id=actor_user_id,
            **amounts,
        )
        db.session.add(po)
        db.session.flush()

        for line in parsed:
            po.lines.append(PurchaseOrderLine(
                item_id=line["item_id"],
                quantity=line["quantity"],
                unit_price=line["resolved_price"],
                line_total=_money(line["quantity"] * line["resolved_price"]),
            ))
        db.session.flush()

        if receipt_status == RECEIPT_COMPLETED:
            _receive_stock(po, actor_user_id)

        settlement_ledger.derive_from_transaction(po, actor_user_id=actor_user_id)
        db.session.commit()
        return po

    po = run_with_retry(_op)
    emit_event(
        "purchase.created",
        "purchase_order",
        po.id,
        actor_user_id,
        f"{po.label} from {po.supplier.name}: {po.final_amount} ({po.receipt_status})",
    )
    return po


def set_receipt_status(po_id: int, status, actor_user_id: int | None = None) -> PurchaseOrder:
    """Move the goods flow; the first transition to COMPLETED receives stock."""
    status = normalize_receipt_status(status)
    received_now = []

    def _op():
        received_now.clear()
        begin_unit_of_work()
        po = get_purchase_order(po_id, lock=True)

        if po.is_received and status != RECEIPT_COMPLETED:
            raise InvalidArgument(
                "Stock for this purchase order was already received",
                details={"purchase_order_id": po_id, "receipt_status": po.receipt_status},
            )
        if po.receipt_status == RECEIPT_CANCELLED and status == RECEIPT_COMPLETED:
            raise InvalidArgument(
                "Cancelled purchase orders cannot be completed",
                details={"purchase_order_id": po_id},
            )

        if status == RECEIPT_COMPLETED and not po.is_received:
            _receive_stock(po, actor_user_id)
            received_now.append(True)
        po.receipt_status = status
        db.session.commit()
        return po

    po = run_with_retry(_op)
    emit_event(
        "purchase.received" if received_now else "purchase.status_changed",
        "purchase_order",
        po.id,
        actor_user_id,
        f"{po.label} is now {po.receipt_status}",
    )
    return po


def set_purchase_settlement(po_id: int, status, actor_user_id: int | None = None) -> PurchaseOrder:
    status = normalize_status(status)

    def _op():
        begin_unit_of_work()
        po = get_purchase_order(po_id, lock=True)
        payable = po.payable

        if status == SETTLEMENT_SETTLED:
            if payable is not None:
                settlement_ledger.force_settle(payable, actor_user_id=actor_user_id)
            else:
                po.paid_amount = po.final_amount
                po.settlement_status = SETTLEMENT_SETTLED
        else:
            if payable is None or settlement_ledger.outstanding_balance(payable) <= 0:
                raise InvalidArgument(
                    "Purchase order has no outstanding balance",
                    details={"purchase_order_id": po_id},
                )

        db.session.commit()
        return po

    po = run_with_retry(_op)
    emit_event(
        "purchase.settlement_changed",
        "purchase_order",
        po.id,
        actor_user_id,
        f"{po.label} is now {po.settlement_status}",
    )
    return po


def edit_line_quantity(po_id: int, line_id: int, new_quantity, actor_user_id: int | None = None) -> PurchaseOrder:
    """
    Change one line's quantity.

    Received orders apply only (new - old) to stock, never the full quantity.
    Totals are recomputed and the payable follows the new final amount.
    """
    new_quantity = parse_decimal(new_quantity, "quantity", positive=True)
    if new_quantity is None:
        raise InvalidArgument("quantity is required")

    def _op():
        begin_unit_of_work()
        po = get_purchase_order(po_id, lock=True)
        line = next((l for l in po.lines if l.id == line_id), None)
        if line is None:
            raise NotFound(
                "Purchase order line not found",
                details={"purchase_order_id": po_id, "line_id": line_id},
            )

        diff = new_quantity - Decimal(line.quantity)
        if diff == 0:
            db.session.commit()
            return po

        if po.is_received:
            if diff < 0:
                locked = load_items([{"item_id": line.item_id}])[line.item_id]
                on_hand = Decimal(locked.quantity or 0)
                if on_hand < -diff:
                    raise InsufficientStock(
                        "Received stock has already been used; cannot reduce quantity",
                        details={"items": [{
                            "item_id": line.item_id,
                            "requested_quantity": float(-diff),
                            "on_hand": float(on_hand),
                        }]},
                    )
            stock_ledger.apply_delta(
                line.item_id,
                diff,
                f"Quantity edit on {po.label}",
                change_type=MOVEMENT_ADJUSTMENT,
                actor_user_id=actor_user_id,
            )

        line.quantity = new_quantity
        line.line_total = _money(new_quantity * Decimal(line.unit_price))
        _recompute_totals(po)
        settlement_ledger.reconcile_principal(po, actor_user_id=actor_user_id)
        db.session.commit()
        return po

    po = run_with_retry(_op)
    emit_event(
        "purchase.line_edited",
        "purchase_order",
        po.id,
        actor_user_id,
        f"{po.label} line {line_id} quantity set to {new_quantity}",
    )
    return po


def delete_purchase_order(po_id: int, actor_user_id: int | None = None, on_reversal: str | None = None) -> dict:
    """
    Reverse a purchase order: received stock goes back out, the payable is
    reconciled by the reversal policy and kept, marked REVERSED.
    """
    policy = settlement_ledger.resolve_reversal_policy(on_reversal)

    def _op():
        begin_unit_of_work()
        po = get_purchase_order(po_id, lock=True)
        label = po.label

        removed = []
        if po.is_received:
            _check_reversible(po)
            for line in po.lines:
                stock_ledger.apply_delta(
                    line.item_id,
                    -Decimal(line.quantity),
                    f"Reversal of {label}",
                    change_type=MOVEMENT_REVERSAL,
                    actor_user_id=actor_user_id,
                )
                removed.append({"item_id": line.item_id, "quantity": float(line.quantity)})

        payable = po.payable
        payable_id = None
        if payable is not None:
            settlement_ledger.detach_on_reversal(payable, policy, actor_user_id=actor_user_id)
            payable_id = payable.id

        db.session.delete(po)
        db.session.commit()
        return {
            "purchase_order_id": po_id,
            "label": label,
            "removed": removed,
            "receivable_id": payable_id,
            "on_reversal": policy,
        }

    result = run_with_retry(_op)
    emit_event(
        "purchase.deleted",
        "purchase_order",
        po_id,
        actor_user_id,
        f"{result['label']} deleted",
    )
    return result
