# Overview: Receivables, payables and their installments; owns settlement status sync.

"""
Settlement Ledger

WHY: A partially paid sale or purchase leaves an amount owed that must stay a
faithful mirror of its originating transaction for as long as either exists.

DESIGN PRINCIPLES:
- Explicit linkage: Receivable.sale_id / purchase_order_id, never a parsed label
- One sync rule: every installment change recomputes the receivable and calls
  sync_origin_status(), the only place the origin's settlement status is
  written after creation
- History is append-only: settling in full inserts a closing installment,
  nothing ever deletes installments except delete_installment()

INVARIANTS:
- principal - SUM(installments) = outstanding balance >= 0
  (installments larger than the outstanding balance are rejected)
- status == PAID  <=>  outstanding balance == 0
- origin settled  <=>  SUM(installments) >= origin.final_amount
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Installment, PurchaseOrder, Receivable, Sale
from ..models.sales import SETTLEMENT_PARTIAL, SETTLEMENT_SETTLED
from ..models.settlement import (
    DIRECTION_OWED_BY_SHOP,
    DIRECTION_OWED_TO_SHOP,
    ORIGIN_ACTIVE,
    ORIGIN_REVERSED,
    RECEIVABLE_OVERDUE,
    RECEIVABLE_PAID,
    RECEIVABLE_PENDING,
)
from app.time_utils import today as business_today, utcnow
from app.validation import parse_date, parse_decimal
from .concurrency import begin_unit_of_work, lock_for_update, run_with_retry
from .errors import InvalidArgument, NotFound
from .event_sink import emit_event


POLICY_PRESERVE = "preserve"
POLICY_FORCE_SETTLE = "force_settle"
REVERSAL_POLICIES = {POLICY_PRESERVE, POLICY_FORCE_SETTLE}


# =============================================================================
# READS
# =============================================================================

def get_receivable(receivable_id: int, *, lock: bool = False) -> Receivable:
    query = db.session.query(Receivable).filter_by(id=receivable_id)
    if lock:
        query = lock_for_update(query)
    receivable = query.first()
    if receivable is None:
        raise NotFound("Receivable not found", details={"receivable_id": receivable_id})
    return receivable


def outstanding_balance(receivable: Receivable) -> Decimal:
    return receivable.outstanding_balance


# =============================================================================
# SYNC RULE
# =============================================================================

def _origin_of(receivable: Receivable):
    if receivable.sale is not None:
        return receivable.sale
    return receivable.purchase_order


def _set_origin_settlement(origin, status: str) -> None:
    if isinstance(origin, PurchaseOrder):
        origin.settlement_status = status
    else:
        origin.status = status


def sync_origin_status(receivable: Receivable) -> None:
    """
    Mirror the receivable onto its originating sale / purchase order.

    paid_amount = min(SUM(installments), final_amount)
    status = SETTLED iff SUM(installments) >= final_amount
    """
    origin = _origin_of(receivable)
    if origin is None:
        return

    total_paid = receivable.total_paid
    final_amount = Decimal(origin.final_amount)
    origin.paid_amount = min(total_paid, final_amount)
    _set_origin_settlement(
        origin,
        SETTLEMENT_SETTLED if total_paid >= final_amount else SETTLEMENT_PARTIAL,
    )


def _recompute(receivable: Receivable, as_of: date | None = None) -> None:
    """Receivable status from its installments, then propagate to the origin."""
    as_of = as_of or business_today()
    db.session.flush()
    db.session.expire(receivable, ["installments"])

    if receivable.total_paid >= Decimal(receivable.principal):
        receivable.status = RECEIVABLE_PAID
    elif receivable.due_date is not None and receivable.due_date < as_of:
        receivable.status = RECEIVABLE_OVERDUE
    else:
        receivable.status = RECEIVABLE_PENDING

    sync_origin_status(receivable)
    db.session.flush()


# =============================================================================
# DERIVATION
# =============================================================================

def derive_from_transaction(txn, *, actor_user_id: int | None = None) -> Receivable | None:
    """
    Create the receivable (sale) or payable (purchase order) for a partially
    paid transaction.

    Returns None when paid >= final or no counterparty is known. When paid > 0
    the initial payment is recorded as the first installment. Does not commit.
    """
    final_amount = Decimal(txn.final_amount)
    paid_amount = Decimal(txn.paid_amount or 0)
    if paid_amount >= final_amount:
        return None

    if isinstance(txn, Sale):
        counterparty = txn.client
        direction = DIRECTION_OWED_TO_SHOP
        issued_on = txn.sale_date
    elif isinstance(txn, PurchaseOrder):
        counterparty = txn.supplier
        direction = DIRECTION_OWED_BY_SHOP
        issued_on = txn.order_date
    else:
        raise InvalidArgument("Unsupported transaction type")

    if counterparty is None:
        return None

    issued_on = issued_on or business_today()
    grace_days = current_app.config.get("RECEIVABLE_GRACE_DAYS", 30)

    receivable = Receivable(
        direction=direction,
        counterparty_name=counterparty.name,
        counterparty_phone=counterparty.phone,
        counterparty_email=counterparty.email,
        principal=final_amount,
        issued_on=issued_on,
        due_date=issued_on + timedelta(days=grace_days),
        status=RECEIVABLE_PENDING,
        description=f"Balance of {txn.label}",
        origin_label=txn.label,
        origin_state=ORIGIN_ACTIVE,
    )
    if isinstance(txn, Sale):
        receivable.client_id = counterparty.id
        receivable.sale = txn
    else:
        receivable.supplier_id = counterparty.id
        receivable.purchase_order = txn
    db.session.add(receivable)
    db.session.flush()

    if paid_amount > 0:
        db.session.add(Installment(
            receivable_id=receivable.id,
            amount=paid_amount,
            payment_date=issued_on,
            notes="Initial payment",
            created_by_user_id=actor_user_id,
        ))

    _recompute(receivable)
    return receivable


def reconcile_principal(txn, *, actor_user_id: int | None = None) -> Receivable | None:
    """
    Follow a change of txn.final_amount (purchase line edits).

    - linked receivable: principal moves to the new final amount; rejected if
      that would fall below what was already paid
    - no receivable, final now above paid: derive one
    - no receivable otherwise: clamp paid_amount and mark settled
    Does not commit.
    """
    receivable = getattr(txn, "receivable", None) if isinstance(txn, Sale) else getattr(txn, "payable", None)
    final_amount = Decimal(txn.final_amount)

    if receivable is not None:
        if final_amount <= 0 or final_amount < receivable.total_paid:
            raise InvalidArgument(
                "New total is below the amount already paid",
                details={
                    "final_amount": str(final_amount),
                    "total_paid": str(receivable.total_paid),
                    "receivable_id": receivable.id,
                },
            )
        receivable.principal = final_amount
        _recompute(receivable)
        return receivable

    paid_amount = Decimal(txn.paid_amount or 0)
    if final_amount > paid_amount:
        derived = derive_from_transaction(txn, actor_user_id=actor_user_id)
        if derived is None:
            _set_origin_settlement(txn, SETTLEMENT_PARTIAL)
        return derived

    txn.paid_amount = final_amount
    _set_origin_settlement(txn, SETTLEMENT_SETTLED)
    return None


# =============================================================================
# INSTALLMENTS
# =============================================================================

def _add_installment(
    receivable: Receivable,
    amount,
    payment_date,
    notes: str | None,
    actor_user_id: int | None,
) -> Installment:
    amount = parse_decimal(amount, "amount", positive=True)
    if amount is None:
        raise InvalidArgument("amount is required")
    payment_date = parse_date(payment_date, "payment_date", default=business_today())

    balance = receivable.outstanding_balance
    if amount > balance:
        raise InvalidArgument(
            "Installment exceeds outstanding balance",
            details={
                "receivable_id": receivable.id,
                "amount": str(amount),
                "outstanding_balance": str(balance),
            },
        )

    installment = Installment(
        receivable_id=receivable.id,
        amount=amount,
        payment_date=payment_date,
        notes=notes,
        created_by_user_id=actor_user_id,
    )
    db.session.add(installment)
    _recompute(receivable)
    return installment


def record_installment(
    receivable_id: int,
    amount,
    payment_date=None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> Installment:
    """Append a payment against a receivable and propagate the new status. Commits."""
    def _op():
        begin_unit_of_work()
        receivable = get_receivable(receivable_id, lock=True)
        installment = _add_installment(receivable, amount, payment_date, notes, actor_user_id)
        db.session.commit()
        return installment

    installment = run_with_retry(_op)
    emit_event(
        "installment.recorded",
        "receivable",
        installment.receivable_id,
        actor_user_id,
        f"Installment of {installment.amount} recorded on receivable #{installment.receivable_id}",
    )
    return installment


def delete_installment(installment_id: int, actor_user_id: int | None = None) -> Receivable:
    """Remove one installment, recompute and re-propagate. Commits."""
    def _op():
        begin_unit_of_work()
        installment = db.session.query(Installment).filter_by(id=installment_id).first()
        if installment is None:
            raise NotFound("Installment not found", details={"installment_id": installment_id})

        receivable = get_receivable(installment.receivable_id, lock=True)
        amount = installment.amount
        db.session.delete(installment)
        _recompute(receivable)
        db.session.commit()
        return receivable, amount

    receivable, amount = run_with_retry(_op)
    emit_event(
        "installment.deleted",
        "receivable",
        receivable.id,
        actor_user_id,
        f"Installment of {amount} removed from receivable #{receivable.id}",
    )
    return receivable


def force_settle(
    receivable: Receivable,
    *,
    actor_user_id: int | None = None,
    notes: str = "Settled in full",
) -> Installment | None:
    """
    Close the receivable with one installment for the outstanding balance.

    No-op (returns None) when nothing is outstanding. Does not commit.
    """
    balance = receivable.outstanding_balance
    if balance <= 0:
        _recompute(receivable)
        return None
    return _add_installment(receivable, balance, business_today(), notes, actor_user_id)


# =============================================================================
# REVERSAL
# =============================================================================

def resolve_reversal_policy(policy: str | None) -> str:
    policy = policy or current_app.config.get("REVERSAL_RECEIVABLE_POLICY", POLICY_PRESERVE)
    if policy not in REVERSAL_POLICIES:
        raise InvalidArgument(
            "Unknown reversal policy",
            details={"on_reversal": policy, "allowed": sorted(REVERSAL_POLICIES)},
        )
    return policy


def detach_on_reversal(
    receivable: Receivable,
    policy: str,
    *,
    actor_user_id: int | None = None,
) -> Receivable:
    """
    Reconcile a receivable whose originating transaction is being deleted.

    preserve: the outstanding balance stays owed.
    force_settle: a closing installment brings the balance to zero.
    Either way the link is cleared and origin_state becomes REVERSED; the
    receivable itself is never deleted. Does not commit.
    """
    label = receivable.origin_label
    if policy == POLICY_FORCE_SETTLE:
        force_settle(
            receivable,
            actor_user_id=actor_user_id,
            notes=f"Closed on reversal of {label}",
        )

    receivable.sale = None
    receivable.purchase_order = None
    receivable.origin_state = ORIGIN_REVERSED
    receivable.origin_reversed_at = utcnow()
    db.session.flush()
    return receivable


# =============================================================================
# MAINTENANCE
# =============================================================================

def refresh_overdue(as_of: date | None = None) -> int:
    """Mark PENDING receivables past their due date OVERDUE. Commits."""
    as_of = as_of or business_today()

    def _op():
        begin_unit_of_work()
        rows = lock_for_update(
            db.session.query(Receivable).filter(
                Receivable.status == RECEIVABLE_PENDING,
                Receivable.due_date.isnot(None),
                Receivable.due_date < as_of,
            )
        ).all()
        for receivable in rows:
            receivable.status = RECEIVABLE_OVERDUE
        db.session.commit()
        return len(rows)

    return run_with_retry(_op)
