# Overview: Keyed pool of returnable containers (filled/empty/maintenance counts).

"""
Container Pool Invariants (authoritative)

- Counts are kept per key (product_name, capacity, state); the database holds
  at most one ContainerPoolRow per key (unique constraint).
- Every write goes through the keyed row: release() creates it on first use,
  reserve() deletes it when it reaches zero. No row is left at quantity 0.
- batch_id on a row is provenance only: the most recent batch that fed it.
- reserve/release/transfer never commit; the calling unit of work does.
  consolidate() is a maintenance pass with its own unit of work.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass

from ..extensions import db
from ..models import ContainerBatch, ContainerPoolRow
from ..models.containers import CONTAINER_EMPTY, CONTAINER_FILLED, CONTAINER_MAINTENANCE, CONTAINER_STATES
from app.validation import parse_positive_int
from .concurrency import begin_unit_of_work, lock_for_update, run_with_retry
from .errors import InsufficientQuantity, InvalidArgument


@dataclass(frozen=True)
class ReservationToken:
    """What reserve() took out of the pool; enough to put it back."""
    product_name: str
    capacity: str
    state: str
    quantity: int
    batch_id: int | None
    remaining: int


def _normalize_key(product_name, capacity, state) -> tuple[str, str, str]:
    product = (product_name or "").strip() if isinstance(product_name, str) else product_name
    if not product:
        raise InvalidArgument("product_name is required")
    if capacity is None or str(capacity).strip() == "":
        raise InvalidArgument("capacity is required")
    state_norm = str(state or "").strip().upper()
    if state_norm not in CONTAINER_STATES:
        raise InvalidArgument(
            "Unknown container state",
            details={"state": state, "allowed": sorted(CONTAINER_STATES)},
        )
    return product, str(capacity).strip(), state_norm


def _locked_row(product_name: str, capacity: str, state: str) -> ContainerPoolRow | None:
    query = db.session.query(ContainerPoolRow).filter_by(
        product_name=product_name, capacity=capacity, state=state
    )
    return lock_for_update(query).first()


def available(product_name, capacity, state=CONTAINER_FILLED) -> int:
    product, cap, st = _normalize_key(product_name, capacity, state)
    row = db.session.query(ContainerPoolRow).filter_by(
        product_name=product, capacity=cap, state=st
    ).first()
    return row.quantity if row else 0


def reserve(product_name, capacity, state, quantity) -> ReservationToken:
    """
    Take `quantity` containers out of the keyed row.

    A missing row counts as 0 available. Raises InsufficientQuantity without
    touching the row when it holds fewer than requested.
    """
    quantity = parse_positive_int(quantity, "quantity")
    product, cap, st = _normalize_key(product_name, capacity, state)

    row = _locked_row(product, cap, st)
    on_hand = row.quantity if row else 0
    if on_hand < quantity:
        raise InsufficientQuantity(
            f"Not enough {st.lower()} containers of {product} {cap}",
            details={
                "product_name": product,
                "capacity": cap,
                "state": st,
                "requested_quantity": quantity,
                "available": on_hand,
            },
        )

    batch_id = row.batch_id
    row.quantity = on_hand - quantity
    remaining = row.quantity
    if remaining == 0:
        db.session.delete(row)
    db.session.flush()

    return ReservationToken(
        product_name=product,
        capacity=cap,
        state=st,
        quantity=quantity,
        batch_id=batch_id,
        remaining=remaining,
    )


def release(product_name, capacity, state, quantity, batch_id: int | None = None) -> ContainerPoolRow:
    """
    Put `quantity` containers into the keyed row, creating it on first use.

    batch_id, when given, overwrites the row's provenance.
    """
    quantity = parse_positive_int(quantity, "quantity")
    product, cap, st = _normalize_key(product_name, capacity, state)

    row = _locked_row(product, cap, st)
    if row is None:
        row = ContainerPoolRow(product_name=product, capacity=cap, state=st, quantity=0)
        db.session.add(row)

    row.quantity = (row.quantity or 0) + quantity
    if batch_id is not None:
        row.batch_id = batch_id
    db.session.flush()
    return row


def transfer(product_name, capacity, from_state, to_state, quantity) -> tuple[ReservationToken, ContainerPoolRow]:
    """Move containers between states; provenance follows the source row."""
    if str(from_state or "").strip().upper() == str(to_state or "").strip().upper():
        raise InvalidArgument("from_state and to_state must differ", details={"state": from_state})
    token = reserve(product_name, capacity, from_state, quantity)
    row = release(product_name, capacity, to_state, token.quantity, batch_id=token.batch_id)
    return token, row


def consolidate() -> int:
    """
    Repair pass: merge rows sharing a key and drop zero-quantity rows.

    The surviving row keeps the summed quantity and the most recent batch.
    Returns the number of rows removed. Commits.
    """
    def _op():
        begin_unit_of_work()
        rows = lock_for_update(
            db.session.query(ContainerPoolRow).order_by(ContainerPoolRow.id.asc())
        ).all()

        groups: "OrderedDict[tuple, list[ContainerPoolRow]]" = OrderedDict()
        for row in rows:
            groups.setdefault(row.key, []).append(row)

        removed = 0
        for key, group in groups.items():
            total = sum(r.quantity or 0 for r in group)
            batch_ids = [r.batch_id for r in group if r.batch_id is not None]

            if total <= 0:
                for r in group:
                    db.session.delete(r)
                removed += len(group)
                continue

            keeper, extras = group[0], group[1:]
            for r in extras:
                db.session.delete(r)
            removed += len(extras)
            if extras:
                db.session.flush()
                keeper.quantity = total
                if batch_ids:
                    keeper.batch_id = max(batch_ids)

        db.session.commit()
        return removed

    return run_with_retry(_op)


def pool_summary() -> list[dict]:
    """Per (product, capacity): counts by state and total."""
    rows = (
        db.session.query(ContainerPoolRow)
        .order_by(ContainerPoolRow.product_name.asc(), ContainerPoolRow.capacity.asc())
        .all()
    )
    summary: "OrderedDict[tuple, dict]" = OrderedDict()
    for row in rows:
        entry = summary.setdefault(
            (row.product_name, row.capacity),
            {
                "product_name": row.product_name,
                "capacity": row.capacity,
                CONTAINER_FILLED.lower(): 0,
                CONTAINER_EMPTY.lower(): 0,
                CONTAINER_MAINTENANCE.lower(): 0,
                "total": 0,
            },
        )
        entry[row.state.lower()] += row.quantity
        entry["total"] += row.quantity
    return list(summary.values())


def available_products() -> list[dict]:
    """Filled containers on hand, with the resale price of the feeding batch."""
    rows = (
        db.session.query(ContainerPoolRow, ContainerBatch)
        .outerjoin(ContainerBatch, ContainerPoolRow.batch_id == ContainerBatch.id)
        .filter(ContainerPoolRow.state == CONTAINER_FILLED, ContainerPoolRow.quantity > 0)
        .order_by(ContainerPoolRow.product_name.asc(), ContainerPoolRow.capacity.asc())
        .all()
    )
    products = []
    for row, batch in rows:
        products.append({
            "product_name": row.product_name,
            "capacity": row.capacity,
            "available_quantity": row.quantity,
            "batch_id": row.batch_id,
            "unit_resale_price": float(batch.unit_resale_price) if batch else None,
            "container_price": float(batch.container_price) if batch else None,
        })
    return products
