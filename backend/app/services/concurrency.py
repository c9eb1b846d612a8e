# Overview: Unit-of-work helpers for concurrency; row locking and bounded retry.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import ConcurrencyConflict, DependencyUnavailable

_LOCK_MARKERS = ("locked", "deadlock", "lock wait timeout", "could not serialize")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the unit of work takes the write lock up front instead
    (see begin_unit_of_work).
    """
    return query.with_for_update()


def begin_unit_of_work() -> None:
    """
    Open the write transaction before the first read on SQLite.

    BEGIN IMMEDIATE takes the database write lock so two requests cannot
    both read the same quantity and decrement it independently.
    """
    if db.engine.dialect.name == "sqlite" and not db.session().in_transaction():
        db.session.execute(text("BEGIN IMMEDIATE"))


def _is_lock_error(exc: OperationalError) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in _LOCK_MARKERS)


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on lock OperationalErrors (deadlocks, busy database) and
    StaleDataError (optimistic locking conflicts). When attempts are
    exhausted the failure surfaces as ConcurrencyConflict. Any other
    OperationalError means the store is unreachable (DependencyUnavailable).
    Every failure rolls the session back so nothing is partially applied.
    """
    if attempts is None:
        attempts = current_app.config.get("CONCURRENCY_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("CONCURRENCY_RETRY_BACKOFF", 0.1)

    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return func()
        except StaleDataError as exc:
            db.session.rollback()
            last_exc = exc
        except OperationalError as exc:
            db.session.rollback()
            if not _is_lock_error(exc):
                raise DependencyUnavailable("Persistent store unavailable") from exc
            last_exc = exc
        except Exception:
            db.session.rollback()
            raise

        if attempt < attempts - 1:
            time.sleep(backoff_base * (2 ** attempt))

    current_app.logger.warning("Unit of work gave up after %d attempts: %s", attempts, last_exc)
    raise ConcurrencyConflict(
        "Concurrent update detected, please retry",
        details={"attempts": attempts},
    ) from last_exc
