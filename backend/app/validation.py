from __future__ import annotations
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from app.time_utils import parse_iso_date
from app.services.errors import InvalidArgument


# Largest money/quantity value accepted from clients: 9,999,999,999.99
# Keeps values inside Numeric(12, 2) / Numeric(15, 3) columns
MAX_AMOUNT = Decimal("9999999999.99")


def require_fields(payload: dict, *fields: str) -> None:
    if payload is None or not isinstance(payload, dict):
        raise InvalidArgument("Invalid JSON payload")
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise InvalidArgument(
            f"Missing required fields: {', '.join(missing)}",
            details={"missing": missing},
        )


def parse_decimal(
    value: Any,
    field: str,
    *,
    default: Decimal | None = None,
    positive: bool = False,
    allow_negative: bool = False,
) -> Decimal | None:
    """
    Coerce a JSON number or numeric string into a Decimal.

    - None / "" -> default
    - bools, NaN, Infinity and scientific notation are rejected
    - floats go through str() so 0.1 stays 0.1
    - positive=True rejects zero and negatives
    - negatives are rejected unless allow_negative=True
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return default

    if isinstance(value, bool):
        raise InvalidArgument(f"{field} must be a number")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise InvalidArgument(f"{field} must be a plain number (scientific notation not allowed)")
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise InvalidArgument(f"{field} must be a number")
    else:
        raise InvalidArgument(f"{field} must be a number")

    if not result.is_finite():
        raise InvalidArgument(f"{field} must be a finite number")
    if positive and result <= 0:
        raise InvalidArgument(f"{field} must be greater than zero", details={field: str(result)})
    if not allow_negative and result < 0:
        raise InvalidArgument(f"{field} must not be negative", details={field: str(result)})
    if abs(result) > MAX_AMOUNT:
        raise InvalidArgument(f"{field} is too large", details={field: str(result)})
    return result


def parse_int(value: Any, field: str, *, default: int | None = None) -> int | None:
    """Strict integer parsing: rejects floats, decimals and scientific notation."""
    if value is None:
        return default

    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return default
        if "e" in stripped.lower():
            raise InvalidArgument(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise InvalidArgument(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise InvalidArgument(f"{field} must be an integer")
    if isinstance(value, float):
        raise InvalidArgument(f"{field} must be an integer, not a decimal")
    raise InvalidArgument(f"{field} must be an integer")


def parse_positive_int(value: Any, field: str) -> int:
    result = parse_int(value, field)
    if result is None:
        raise InvalidArgument(f"{field} is required")
    if result <= 0:
        raise InvalidArgument(f"{field} must be greater than zero", details={field: result})
    return result


def parse_date(value: Any, field: str, *, default: date | None = None) -> date | None:
    if value is None or value == "":
        return default
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidArgument(f"{field} must be an ISO-8601 date")
    try:
        parsed = parse_iso_date(value)
    except ValueError:
        raise InvalidArgument(f"{field} must be an ISO-8601 date")
    return parsed if parsed is not None else default


def parse_bool(value: Any, field: str, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off", ""}:
            return False
    raise InvalidArgument(f"{field} must be a boolean")


def clean_str(value: Any, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    if max_length is not None and len(s) > max_length:
        raise InvalidArgument(f"Value exceeds maximum length {max_length}")
    return s
