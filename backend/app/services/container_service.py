# Overview: Container sales and container purchases (batches) driven through the container pool.

"""
Container Service

SALE MODES (fixed at creation, see ContainerSale.keeps_container):
- keep: customer leaves with the container -> reserve FILLED
- swap: customer hands back an empty      -> transfer FILLED -> EMPTY

Edits apply only the quantity difference in the sale's mode. Deleting a sale
performs the exact inverse pool operation; for a swap that means EMPTY ->
FILLED, which fails with InsufficientQuantity if those empties are gone.

BATCHES:
- creating a batch releases its quantity into the pool row for its state and
  stamps the row with the batch as provenance
- a batch referenced by container sales cannot be deleted
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import ContainerBatch, ContainerPoolRow, ContainerSale
from ..models.containers import CONTAINER_EMPTY, CONTAINER_FILLED, CONTAINER_STATES
from app.time_utils import today
from app.validation import clean_str, parse_date, parse_decimal, parse_positive_int
from . import container_pool
from .concurrency import begin_unit_of_work, lock_for_update, run_with_retry
from .errors import InvalidArgument, NotFound
from .event_sink import emit_event
from .sales_service import WALK_IN_CUSTOMER, _money


# =============================================================================
# CONTAINER SALES
# =============================================================================

def get_container_sale(sale_id: int, *, lock: bool = False) -> ContainerSale:
    query = db.session.query(ContainerSale).filter_by(id=sale_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise NotFound("Container sale not found", details={"container_sale_id": sale_id})
    return sale


def _take(sale_key: tuple, keeps_container: bool, quantity: int) -> container_pool.ReservationToken:
    product, capacity = sale_key
    if keeps_container:
        return container_pool.reserve(product, capacity, CONTAINER_FILLED, quantity)
    token, _ = container_pool.transfer(product, capacity, CONTAINER_FILLED, CONTAINER_EMPTY, quantity)
    return token


def _give_back(sale_key: tuple, keeps_container: bool, quantity: int) -> None:
    product, capacity = sale_key
    if keeps_container:
        container_pool.release(product, capacity, CONTAINER_FILLED, quantity)
    else:
        container_pool.transfer(product, capacity, CONTAINER_EMPTY, CONTAINER_FILLED, quantity)


def _default_unit_price(product_name: str, capacity: str, keeps_container: bool) -> Decimal:
    row = db.session.query(ContainerPoolRow).filter_by(
        product_name=product_name, capacity=capacity, state=CONTAINER_FILLED
    ).first()
    batch = db.session.get(ContainerBatch, row.batch_id) if row is not None and row.batch_id else None
    if batch is None:
        raise InvalidArgument(
            "unit_price is required when no batch price is known",
            details={"product_name": product_name, "capacity": capacity},
        )
    price = Decimal(batch.unit_resale_price or 0)
    if keeps_container:
        price += Decimal(batch.container_price or 0)
    return price


def create_container_sale(
    product_name,
    capacity,
    quantity,
    *,
    unit_price=None,
    customer_name: str | None = None,
    payment_method: str | None = None,
    includes_container: bool = False,
    customer_brings_container: bool = True,
    sale_date=None,
    actor_user_id: int | None = None,
) -> ContainerSale:
    quantity = parse_positive_int(quantity, "quantity")
    unit_price = parse_decimal(unit_price, "unit_price")
    sale_date = parse_date(sale_date, "sale_date", default=today())
    keeps_container = bool(includes_container and not customer_brings_container)
    product = clean_str(product_name, max_length=255)
    cap = clean_str(capacity, max_length=32)
    if not product or not cap:
        raise InvalidArgument("product_name and capacity are required")

    def _op():
        begin_unit_of_work()
        price = unit_price
        if price is None:
            price = _default_unit_price(product, cap, keeps_container)

        token = _take((product, cap), keeps_container, quantity)
        sale = ContainerSale(
            product_name=token.product_name,
            capacity=token.capacity,
            quantity=quantity,
            unit_price=price,
            total_amount=_money(price * quantity),
            customer_name=clean_str(customer_name) or WALK_IN_CUSTOMER,
            payment_method=clean_str(payment_method, max_length=32) or "cash",
            includes_container=bool(includes_container),
            customer_brings_container=bool(customer_brings_container),
            batch_id=token.batch_id,
            sale_date=sale_date,
            created_by_user_id=actor_user_id,
        )
        db.session.add(sale)
        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    emit_event(
        "container_sale.created",
        "container_sale",
        sale.id,
        actor_user_id,
        f"{sale.quantity} x {sale.product_name} {sale.capacity} sold to {sale.customer_name}",
    )
    return sale


def edit_container_sale_quantity(sale_id: int, new_quantity, actor_user_id: int | None = None) -> ContainerSale:
    new_quantity = parse_positive_int(new_quantity, "quantity")

    def _op():
        begin_unit_of_work()
        sale = get_container_sale(sale_id, lock=True)
        diff = new_quantity - sale.quantity
        key = (sale.product_name, sale.capacity)

        if diff > 0:
            _take(key, sale.keeps_container, diff)
        elif diff < 0:
            _give_back(key, sale.keeps_container, -diff)

        sale.quantity = new_quantity
        sale.total_amount = _money(Decimal(sale.unit_price) * new_quantity)
        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    emit_event(
        "container_sale.edited",
        "container_sale",
        sale.id,
        actor_user_id,
        f"Container sale #{sale.id} quantity set to {sale.quantity}",
    )
    return sale


def delete_container_sale(sale_id: int, actor_user_id: int | None = None) -> dict:
    def _op():
        begin_unit_of_work()
        sale = get_container_sale(sale_id, lock=True)
        _give_back((sale.product_name, sale.capacity), sale.keeps_container, sale.quantity)
        result = {
            "container_sale_id": sale.id,
            "product_name": sale.product_name,
            "capacity": sale.capacity,
            "quantity": sale.quantity,
            "mode": "keep" if sale.keeps_container else "swap",
        }
        db.session.delete(sale)
        db.session.commit()
        return result

    result = run_with_retry(_op)
    emit_event(
        "container_sale.deleted",
        "container_sale",
        sale_id,
        actor_user_id,
        f"Container sale #{sale_id} deleted; {result['quantity']} containers returned to the pool",
    )
    return result


# =============================================================================
# CONTAINER BATCHES
# =============================================================================

def get_container_batch(batch_id: int, *, lock: bool = False) -> ContainerBatch:
    query = db.session.query(ContainerBatch).filter_by(id=batch_id)
    if lock:
        query = lock_for_update(query)
    batch = query.first()
    if batch is None:
        raise NotFound("Container batch not found", details={"batch_id": batch_id})
    return batch


def create_container_batch(
    product_name,
    capacity,
    quantity,
    *,
    unit_cost=None,
    container_price=None,
    unit_resale_price=None,
    supplier_name: str | None = None,
    state: str = CONTAINER_FILLED,
    acquired_on=None,
    actor_user_id: int | None = None,
) -> ContainerBatch:
    """Record a container purchase and put it into the pool."""
    quantity = parse_positive_int(quantity, "quantity")
    product = clean_str(product_name, max_length=255)
    cap = clean_str(capacity, max_length=32)
    if not product or not cap:
        raise InvalidArgument("product_name and capacity are required")
    state = str(state or CONTAINER_FILLED).strip().upper()
    if state not in CONTAINER_STATES:
        raise InvalidArgument("Unknown container state", details={"state": state})
    acquired_on = parse_date(acquired_on, "acquired_on", default=today())

    def _op():
        begin_unit_of_work()
        batch = ContainerBatch(
            product_name=product,
            capacity=cap,
            state=state,
            quantity_acquired=quantity,
            unit_cost=parse_decimal(unit_cost, "unit_cost", default=Decimal("0")),
            container_price=parse_decimal(container_price, "container_price", default=Decimal("0")),
            unit_resale_price=parse_decimal(unit_resale_price, "unit_resale_price", default=Decimal("0")),
            supplier_name=clean_str(supplier_name),
            acquired_on=acquired_on,
            created_by_user_id=actor_user_id,
        )
        db.session.add(batch)
        db.session.flush()
        container_pool.release(product, cap, state, quantity, batch_id=batch.id)
        db.session.commit()
        return batch

    batch = run_with_retry(_op)
    emit_event(
        "container_batch.created",
        "container_batch",
        batch.id,
        actor_user_id,
        f"{batch.quantity_acquired} x {batch.product_name} {batch.capacity} added to the pool",
    )
    return batch


def edit_container_batch_quantity(batch_id: int, new_quantity, actor_user_id: int | None = None) -> ContainerBatch:
    """Apply only the difference to the pool row for the batch's state."""
    new_quantity = parse_positive_int(new_quantity, "quantity")

    def _op():
        begin_unit_of_work()
        batch = get_container_batch(batch_id, lock=True)
        diff = new_quantity - batch.quantity_acquired

        if diff > 0:
            container_pool.release(batch.product_name, batch.capacity, batch.state, diff, batch_id=batch.id)
        elif diff < 0:
            container_pool.reserve(batch.product_name, batch.capacity, batch.state, -diff)

        batch.quantity_acquired = new_quantity
        db.session.commit()
        return batch

    batch = run_with_retry(_op)
    emit_event(
        "container_batch.edited",
        "container_batch",
        batch.id,
        actor_user_id,
        f"Container batch #{batch.id} quantity set to {batch.quantity_acquired}",
    )
    return batch


def delete_container_batch(batch_id: int, actor_user_id: int | None = None) -> dict:
    """
    Remove a batch and take its quantity back out of the pool.

    Refused while container sales reference the batch.
    """
    def _op():
        begin_unit_of_work()
        batch = get_container_batch(batch_id, lock=True)

        sale_count = batch.sales.count()
        if sale_count:
            raise InvalidArgument(
                "Container batch has sales and cannot be deleted",
                details={"batch_id": batch_id, "sales": sale_count},
            )

        container_pool.reserve(batch.product_name, batch.capacity, batch.state, batch.quantity_acquired)
        db.session.query(ContainerPoolRow).filter_by(batch_id=batch.id).update(
            {ContainerPoolRow.batch_id: None}, synchronize_session="fetch"
        )
        result = {
            "batch_id": batch.id,
            "product_name": batch.product_name,
            "capacity": batch.capacity,
            "quantity": batch.quantity_acquired,
        }
        db.session.delete(batch)
        db.session.commit()
        return result

    result = run_with_retry(_op)
    emit_event(
        "container_batch.deleted",
        "container_batch",
        batch_id,
        actor_user_id,
        f"Container batch #{batch_id} deleted; {result['quantity']} containers removed from the pool",
    )
    return result


# =============================================================================
# STATE MOVES
# =============================================================================

def move_containers(
    product_name,
    capacity,
    from_state,
    to_state,
    quantity,
    actor_user_id: int | None = None,
) -> dict:
    """Move containers between FILLED / EMPTY / MAINTENANCE (refill, repair)."""
    def _op():
        begin_unit_of_work()
        token, row = container_pool.transfer(product_name, capacity, from_state, to_state, quantity)
        result = {
            "product_name": token.product_name,
            "capacity": token.capacity,
            "from_state": token.state,
            "to_state": row.state,
            "quantity": token.quantity,
            "from_remaining": token.remaining,
            "to_quantity": row.quantity,
        }
        db.session.commit()
        return result

    result = run_with_retry(_op)
    emit_event(
        "containers.moved",
        "container_pool",
        None,
        actor_user_id,
        f"{result['quantity']} x {result['product_name']} {result['capacity']} moved "
        f"{result['from_state']} -> {result['to_state']}",
    )
    return result
