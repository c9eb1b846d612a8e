# Overview: Structured error taxonomy shared by the ledger services and routes.

"""
Ledger Errors

Every failure leaving a service carries a machine-readable ``kind`` plus a
message and optional details, so routes can answer with a specific rejection
reason instead of a generic 500.

KINDS:
- NOT_FOUND: entity reference does not resolve
- INSUFFICIENT_STOCK: item on-hand quantity below a requested decrement
- INSUFFICIENT_QUANTITY: container pool row below a requested decrement
- INVALID_ARGUMENT: non-positive quantity/amount, missing counterparty, bad state
- CONCURRENCY_CONFLICT: optimistic check failed after bounded retries
- DEPENDENCY_UNAVAILABLE: persistent store unreachable
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for ledger failures."""

    kind = "LEDGER_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "message": self.message,
            "details": self.details,
        }


class NotFound(LedgerError):
    kind = "NOT_FOUND"
    http_status = 404


class InsufficientStock(LedgerError):
    kind = "INSUFFICIENT_STOCK"
    http_status = 409


class InsufficientQuantity(LedgerError):
    kind = "INSUFFICIENT_QUANTITY"
    http_status = 409


class InvalidArgument(LedgerError):
    kind = "INVALID_ARGUMENT"
    http_status = 400


class ConcurrencyConflict(LedgerError):
    """Raised when retries are exhausted; the caller may retry the request."""
    kind = "CONCURRENCY_CONFLICT"
    http_status = 409


class DependencyUnavailable(LedgerError):
    kind = "DEPENDENCY_UNAVAILABLE"
    http_status = 503
