# backend/app/routes/system.py
"""
System health endpoint.

Checks database connectivity and the ledger invariants that are cheap to
verify in SQL, so a drifted pool or receivable shows up before a user hits it.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import ContainerPoolRow, Installment, Item, Receivable
from ..models.settlement import RECEIVABLE_PAID
from app.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def _run_check(label: str, probe) -> dict:
    """
    Time one probe. The probe returns (status, details); any exception
    turns the check unhealthy and is logged with its traceback.
    """
    started = time.perf_counter()
    try:
        status, details = probe()
        result = {"status": status, "details": details}
    except Exception:
        current_app.logger.exception("%s health check failed", label)
        result = {"status": "unhealthy", "error": f"{label} error"}
    result["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
    return result


def _probe_database():
    return "healthy", {"items": db.session.query(Item).count()}


def _probe_container_pool():
    """Degraded when rows share a key or sit at zero (run `flask pool consolidate`)."""
    duplicate_keys = (
        db.session.query(ContainerPoolRow.product_name)
        .group_by(ContainerPoolRow.product_name, ContainerPoolRow.capacity, ContainerPoolRow.state)
        .having(func.count(ContainerPoolRow.id) > 1)
        .count()
    )
    zero_rows = db.session.query(ContainerPoolRow).filter(ContainerPoolRow.quantity <= 0).count()
    status = "degraded" if duplicate_keys or zero_rows else "healthy"
    return status, {"duplicate_keys": duplicate_keys, "zero_quantity_rows": zero_rows}


def _probe_receivables():
    """Degraded when PAID disagrees with installments covering the principal."""
    paid_per_receivable = (
        db.session.query(
            Installment.receivable_id.label("receivable_id"),
            func.coalesce(func.sum(Installment.amount), 0).label("paid"),
        )
        .group_by(Installment.receivable_id)
        .subquery()
    )
    rows = (
        db.session.query(Receivable.id, Receivable.status, Receivable.principal, paid_per_receivable.c.paid)
        .outerjoin(paid_per_receivable, paid_per_receivable.c.receivable_id == Receivable.id)
        .all()
    )
    mismatched = [
        receivable_id for receivable_id, status, principal, paid in rows
        if (status == RECEIVABLE_PAID) != ((paid or 0) >= principal)
    ]
    status = "degraded" if mismatched else "healthy"
    return status, {"receivables": len(rows), "status_mismatches": mismatched[:20]}


@system_bp.get("/health")
def health():
    """
    200 while every check is healthy or degraded, 503 once any is unhealthy.
    """
    started = time.perf_counter()
    checks = {
        "database": _run_check("Database", _probe_database),
        "container_pool": _run_check("Container pool", _probe_container_pool),
        "receivables": _run_check("Receivables", _probe_receivables),
    }

    statuses = {check["status"] for check in checks.values()}
    if "unhealthy" in statuses:
        overall, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall, http_status = "degraded", 200
    else:
        overall, http_status = "healthy", 200

    return {
        "status": overall,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "checks": checks,
    }, http_status
