# backend/app/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shop_ledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shop_ledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Receivables derived from partially paid transactions fall due after this many days
    RECEIVABLE_GRACE_DAYS = int(os.environ.get("RECEIVABLE_GRACE_DAYS", "30"))

    # What happens to a linked receivable when its sale/purchase is deleted:
    # "preserve" keeps the outstanding balance, "force_settle" closes it with a final installment
    REVERSAL_RECEIVABLE_POLICY = os.environ.get("REVERSAL_RECEIVABLE_POLICY", "preserve")

    # Sale lines priced differently from the catalog move the catalog price forward
    PRICE_DRIFT_ENABLED = _env_bool("PRICE_DRIFT_ENABLED", True)

    CONCURRENCY_RETRY_ATTEMPTS = int(os.environ.get("CONCURRENCY_RETRY_ATTEMPTS", "3"))
    CONCURRENCY_RETRY_BACKOFF = float(os.environ.get("CONCURRENCY_RETRY_BACKOFF", "0.1"))

    # Dispatch EventSink notifications on a worker thread instead of inline
    EVENT_SINK_ASYNC = _env_bool("EVENT_SINK_ASYNC", False)
