from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC timestamp used for every created_at/updated_at column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today() -> date:
    """Business date (UTC) for sales, receipts and installments."""
    return utcnow().date()


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """
    Read a business date from request input or the CLI.

    "2026-01-31" is taken as-is. A full timestamp such as
    "2026-01-31T23:30:00+02:00" is shifted to UTC first and its date kept.
    Blank input gives None; anything else unparseable raises ValueError.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if len(text) == 10:
        return date.fromisoformat(text)

    stamp = datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
    if stamp.tzinfo is not None:
        stamp = stamp.astimezone(timezone.utc)
    return stamp.date()


def to_utc_z(stamp: Optional[datetime]) -> Optional[str]:
    """Stored naive-UTC timestamp -> "YYYY-MM-DDTHH:MM:SSZ" (seconds precision)."""
    if stamp is None:
        return None
    if stamp.tzinfo is not None:
        stamp = stamp.astimezone(timezone.utc).replace(tzinfo=None)
    return stamp.replace(microsecond=0).isoformat() + "Z"


def to_iso_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None
