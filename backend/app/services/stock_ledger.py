# Overview: Stock ledger; the only writer of Item quantities and StockMovement rows.

"""
Stock Ledger Invariants (authoritative)

Stored quantity model:
- Item.quantity is the current on-hand quantity (non-negative decimal).
- Item.previous_quantity is the value just before the most recent mutation.
- Every mutation appends exactly one StockMovement in the same DB transaction.

Delta semantics:
- new = max(0, current + delta). Clamping at zero is policy: oversell is
  prevented by the caller's up-front check (sales/purchase services), not here.
- StockMovement.quantity_delta records the requested delta; new_quantity records
  what was stored.

Concurrency:
- The item row is read FOR UPDATE and guarded by Item.version_id.
- Functions here never commit; the calling unit of work does.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Item, StockMovement
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_INBOUND,
    MOVEMENT_OUTBOUND,
    MOVEMENT_TYPES,
)
from app.validation import parse_decimal
from .concurrency import begin_unit_of_work, lock_for_update, run_with_retry
from .errors import InvalidArgument, NotFound


def _get_item(item_id: int, *, lock: bool = False) -> Item:
    query = db.session.query(Item).filter_by(id=item_id)
    if lock:
        query = lock_for_update(query)
    item = query.first()
    if item is None:
        raise NotFound("Item not found", details={"item_id": item_id})
    return item


def apply_delta(
    item_id: int,
    delta,
    reason: str | None,
    *,
    change_type: str | None = None,
    actor_user_id: int | None = None,
) -> StockMovement:
    """
    Apply a signed quantity change to an item and record the movement.

    change_type defaults to INBOUND for positive deltas and OUTBOUND otherwise.
    Does not commit.
    """
    delta = parse_decimal(delta, "quantity_delta", allow_negative=True)
    if delta is None:
        raise InvalidArgument("quantity_delta is required")
    if change_type is None:
        change_type = MOVEMENT_INBOUND if delta > 0 else MOVEMENT_OUTBOUND
    if change_type not in MOVEMENT_TYPES:
        raise InvalidArgument("Unknown movement type", details={"change_type": change_type})

    item = _get_item(item_id, lock=True)
    current = Decimal(item.quantity or 0)
    new_quantity = max(Decimal("0"), current + delta)

    item.previous_quantity = current
    item.quantity = new_quantity

    movement = StockMovement(
        item_id=item.id,
        change_type=change_type,
        quantity_delta=delta,
        previous_quantity=current,
        new_quantity=new_quantity,
        reason=reason,
        actor_user_id=actor_user_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def snapshot(item_id: int) -> Decimal:
    """Current on-hand quantity (read-only)."""
    item = _get_item(item_id)
    return Decimal(item.quantity or 0)


def drift_price_if_changed(item: Item, unit_price) -> tuple[Decimal, Decimal] | None:
    """
    Move the catalog price to the price a line was actually sold at.

    Returns (old_price, new_price) when the price changed, None otherwise.
    Disabled entirely by PRICE_DRIFT_ENABLED=False. Does not commit.
    """
    if not current_app.config.get("PRICE_DRIFT_ENABLED", True):
        return None
    if unit_price is None:
        return None

    new_price = Decimal(unit_price)
    old_price = Decimal(item.price or 0)
    if new_price == old_price:
        return None

    item.price = new_price
    current_app.logger.info(
        "Price drift on item %s (%s): %s -> %s", item.id, item.name, old_price, new_price
    )
    return old_price, new_price


def is_low_stock(item: Item) -> bool:
    return Decimal(item.quantity or 0) <= Decimal(item.min_quantity or 0)


def list_movements(item_id: int, limit: int = 100) -> list[StockMovement]:
    _get_item(item_id)
    return (
        db.session.query(StockMovement)
        .filter_by(item_id=item_id)
        .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def adjust_stock(item_id: int, delta, reason: str | None, actor_user_id: int | None = None) -> StockMovement:
    """
    Manual stock correction (count differences, breakage).

    Runs as its own unit of work and commits.
    """
    def _op():
        begin_unit_of_work()
        movement = apply_delta(
            item_id,
            delta,
            reason or "Manual adjustment",
            change_type=MOVEMENT_ADJUSTMENT,
            actor_user_id=actor_user_id,
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)
