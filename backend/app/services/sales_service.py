"""
Sales Service - stock, settlement and events for catalog sales

WHY: A sale touches item quantities, the sale document and possibly a
receivable. All of it happens in one unit of work or not at all.

LIFECYCLE:
- create_sale(): validate every line, then decrement stock, persist the sale,
  derive the receivable, commit, and only then emit events
- set_sale_status(): SETTLED goes through the settlement ledger (closing
  installment), never a bare flag flip on one side
- delete_sale(): the reversal; restores stock and reconciles the receivable
  according to the reversal policy
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..models import Client, Item, Sale, SaleLine
from ..models.inventory import MOVEMENT_OUTBOUND, MOVEMENT_REVERSAL
from ..models.sales import SETTLEMENT_PARTIAL, SETTLEMENT_SETTLED, SETTLEMENT_STATUSES
from app.time_utils import today
from app.validation import clean_str, parse_date, parse_decimal, parse_int
from . import settlement_ledger, stock_ledger
from .concurrency import begin_unit_of_work, lock_for_update, run_with_retry
from .errors import InsufficientStock, InvalidArgument, NotFound
from .event_sink import emit_event

CENT = Decimal("0.01")
WALK_IN_CUSTOMER = "Walk-in Customer"


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_status(status) -> str:
    value = str(status or "").strip().upper()
    if value not in SETTLEMENT_STATUSES:
        raise InvalidArgument(
            "Unknown settlement status",
            details={"status": status, "allowed": sorted(SETTLEMENT_STATUSES)},
        )
    return value


def parse_lines(lines, *, price_field: str = "unit_price") -> list[dict]:
    """
    Normalize raw line payloads into {item_id, quantity, unit_price}.

    unit_price may be missing (None); the caller decides the default.
    """
    if not lines or not isinstance(lines, list):
        raise InvalidArgument("At least one line is required")

    parsed = []
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise InvalidArgument("Invalid line payload", details={"line": index})
        item_id = parse_int(raw.get("item_id"), "item_id")
        if item_id is None:
            raise InvalidArgument("item_id is required", details={"line": index})
        quantity = parse_decimal(raw.get("quantity"), "quantity", positive=True)
        if quantity is None:
            raise InvalidArgument("quantity is required", details={"line": index})
        parsed.append({
            "item_id": item_id,
            "quantity": quantity,
            "unit_price": parse_decimal(raw.get(price_field), price_field),
        })
    return parsed


def load_items(parsed_lines: list[dict]) -> dict[int, Item]:
    """Lock every referenced item; NotFound lists all missing ids at once."""
    item_ids = sorted({line["item_id"] for line in parsed_lines})
    items = {
        item.id: item
        for item in lock_for_update(db.session.query(Item).filter(Item.id.in_(item_ids))).all()
    }
    missing = [item_id for item_id in item_ids if item_id not in items]
    if missing:
        raise NotFound("Item not found", details={"item_ids": missing})
    return items


def check_on_hand(parsed_lines: list[dict], items: dict[int, Item]) -> None:
    """
    All-or-nothing availability check, aggregated per item.

    Raises InsufficientStock listing every short item before anything is
    mutated.
    """
    requested: dict[int, Decimal] = {}
    for line in parsed_lines:
        requested[line["item_id"]] = requested.get(line["item_id"], Decimal("0")) + line["quantity"]

    insufficient = []
    for item_id, qty in requested.items():
        on_hand = Decimal(items[item_id].quantity or 0)
        if on_hand < qty:
            insufficient.append({
                "item_id": item_id,
                "item_name": items[item_id].name,
                "requested_quantity": float(qty),
                "on_hand": float(on_hand),
            })

    if insufficient:
        raise InsufficientStock(
            "Insufficient stock for sale",
            details={"items": insufficient},
        )


def resolve_amounts(
    line_total: Decimal,
    *,
    total_amount=None,
    discount=None,
    final_amount=None,
    paid_amount=None,
    status: str | None = None,
) -> dict:
    """
    Work out total / discount / final / paid for a transaction.

    paid_amount missing -> final when the requested status is SETTLED (or not
    given), 0 otherwise. paid_amount is clamped to [0, final].
    """
    total = parse_decimal(total_amount, "total_amount", default=_money(line_total))
    discount = parse_decimal(discount, "discount", default=Decimal("0"))
    final = parse_decimal(final_amount, "final_amount", default=total - discount)
    if final < 0:
        raise InvalidArgument("Discount exceeds total", details={"total_amount": str(total), "discount": str(discount)})

    paid = parse_decimal(paid_amount, "paid_amount")
    if paid is None:
        paid = final if status in (None, SETTLEMENT_SETTLED) else Decimal("0")
    paid = min(max(paid, Decimal("0")), final)

    return {
        "total_amount": _money(total),
        "discount": _money(discount),
        "final_amount": _money(final),
        "paid_amount": _money(paid),
    }


def get_sale(sale_id: int, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise NotFound("Sale not found", details={"sale_id": sale_id})
    return sale


def create_sale(
    lines,
    *,
    client_id: int | None = None,
    client_name: str | None = None,
    payment_method: str | None = None,
    total_amount=None,
    discount=None,
    final_amount=None,
    paid_amount=None,
    status: str | None = None,
    sale_date=None,
    actor_user_id: int | None = None,
) -> Sale:
    """
    Commit a sale: stock out, sale document, receivable when partially paid.

    Raises InvalidArgument / NotFound / InsufficientStock with no side effects.
    """
    parsed = parse_lines(lines)
    requested_status = normalize_status(status) if status else None
    sale_date = parse_date(sale_date, "sale_date", default=today())
    drifts: list[tuple[Item, Decimal, Decimal]] = []

    def _op():
        drifts.clear()
        begin_unit_of_work()

        client = None
        if client_id is not None:
            client = db.session.query(Client).filter_by(id=client_id).first()
            if client is None:
                raise NotFound("Client not found", details={"client_id": client_id})

        items = load_items(parsed)
        check_on_hand(parsed, items)

        line_total_sum = Decimal("0")
        for line in parsed:
            if line["unit_price"] is None:
                line["resolved_price"] = Decimal(items[line["item_id"]].price or 0)
            else:
                line["resolved_price"] = line["unit_price"]
            line_total_sum += line["quantity"] * line["resolved_price"]

        amounts = resolve_amounts(
            line_total_sum,
            total_amount=total_amount,
            discount=discount,
            final_amount=final_amount,
            paid_amount=paid_amount,
            status=requested_status,
        )

        sale = Sale(
            sale_date=sale_date,
            client_id=client.id if client else None,
            client_name=clean_str(client_name) or (client.name if client else WALK_IN_CUSTOMER),
            payment_method=clean_str(payment_method, max_length=32) or "cash",
            status=(
                SETTLEMENT_SETTLED
                if amounts["paid_amount"] >= amounts["final_amount"]
                else SETTLEMENT_PARTIAL
            ),
            created_by_user_id=actor_user_id,
            **amounts,
        )
        db.session.add(sale)
        db.session.flush()

        for line in parsed:
            item = items[line["item_id"]]
            stock_ledger.apply_delta(
                item.id,
                -line["quantity"],
                sale.label,
                change_type=MOVEMENT_OUTBOUND,
                actor_user_id=actor_user_id,
            )
            if line["unit_price"] is not None:
                drift = stock_ledger.drift_price_if_changed(item, line["unit_price"])
                if drift:
                    drifts.append((item, drift[0], drift[1]))

            db.session.add(SaleLine(
                sale_id=sale.id,
                item_id=item.id,
                item_name=item.name,
                quantity=line["quantity"],
                unit_price=line["resolved_price"],
                line_total=_money(line["quantity"] * line["resolved_price"]),
            ))

        settlement_ledger.derive_from_transaction(sale, actor_user_id=actor_user_id)
        db.session.commit()
        return sale

    sale = run_with_retry(_op)

    emit_event(
        "sale.created",
        "sale",
        sale.id,
        actor_user_id,
        f"{sale.label} for {sale.client_name}: {sale.final_amount} ({sale.status})",
    )
    for item, old_price, new_price in drifts:
        emit_event(
            "item.price_changed",
            "item",
            item.id,
            actor_user_id,
            f"{item.name} price changed from {old_price} to {new_price} by {sale.label}",
        )
    for line in sale.lines:
        if line.item is not None and stock_ledger.is_low_stock(line.item):
            emit_event(
                "item.low_stock",
                "item",
                line.item_id,
                actor_user_id,
                f"{line.item.name} is low on stock ({line.item.quantity} left)",
            )
    return sale


def set_sale_status(sale_id: int, status, actor_user_id: int | None = None) -> Sale:
    """
    Administrative settlement change.

    SETTLED: closes the linked receivable with one installment for the
    outstanding balance (or marks a sale without receivable fully paid).
    PARTIALLY_SETTLED: only valid while the linked receivable still has an
    outstanding balance.
    """
    status = normalize_status(status)

    def _op():
        begin_unit_of_work()
        sale = get_sale(sale_id, lock=True)
        receivable = sale.receivable

        if status == SETTLEMENT_SETTLED:
            if receivable is not None:
                settlement_ledger.force_settle(receivable, actor_user_id=actor_user_id)
            else:
                sale.paid_amount = sale.final_amount
                sale.status = SETTLEMENT_SETTLED
        else:
            if receivable is None or settlement_ledger.outstanding_balance(receivable) <= 0:
                raise InvalidArgument(
                    "Sale has no outstanding balance",
                    details={"sale_id": sale_id},
                )

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    emit_event(
        "sale.status_changed",
        "sale",
        sale.id,
        actor_user_id,
        f"{sale.label} is now {sale.status}",
    )
    return sale


def delete_sale(sale_id: int, actor_user_id: int | None = None, on_reversal: str | None = None) -> dict:
    """
    Reverse a sale: stock back in, sale and lines deleted.

    The linked receivable is reconciled by the reversal policy
    (preserve / force_settle) and kept, marked REVERSED.
    """
    policy = settlement_ledger.resolve_reversal_policy(on_reversal)

    def _op():
        begin_unit_of_work()
        sale = get_sale(sale_id, lock=True)
        label = sale.label

        restored = []
        for line in sale.lines:
            stock_ledger.apply_delta(
                line.item_id,
                line.quantity,
                f"Reversal of {label}",
                change_type=MOVEMENT_REVERSAL,
                actor_user_id=actor_user_id,
            )
            restored.append({"item_id": line.item_id, "quantity": float(line.quantity)})

        receivable = sale.receivable
        receivable_id = None
        if receivable is not None:
            settlement_ledger.detach_on_reversal(receivable, policy, actor_user_id=actor_user_id)
            receivable_id = receivable.id

        db.session.delete(sale)
        db.session.commit()
        return {
            "sale_id": sale_id,
            "label": label,
            "restored": restored,
            "receivable_id": receivable_id,
            "on_reversal": policy,
        }

    result = run_with_retry(_op)
    emit_event(
        "sale.deleted",
        "sale",
        sale_id,
        actor_user_id,
        f"{result['label']} deleted; stock restored",
    )
    return result
