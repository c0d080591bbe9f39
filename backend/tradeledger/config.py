# backend/tradeledger/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw not in (None, "") else default


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the backend by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///tradeledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Optimistic concurrency: how hard a coordinated operation retries
    # before giving up with ConcurrencyExhausted.
    LEDGER_RETRY_ATTEMPTS = _env_int("LEDGER_RETRY_ATTEMPTS", 5)
    LEDGER_RETRY_BACKOFF = _env_float("LEDGER_RETRY_BACKOFF", 0.05)
    LEDGER_RETRY_TIMEOUT = _env_float("LEDGER_RETRY_TIMEOUT", 10.0)

    # Business settings, read only when a document is created
    DEFAULT_TAX_RATE_BPS = _env_int("DEFAULT_TAX_RATE_BPS", 0)
    SALE_REFERENCE_PREFIX = os.environ.get("SALE_REFERENCE_PREFIX", "FV")
    PURCHASE_REFERENCE_PREFIX = os.environ.get("PURCHASE_REFERENCE_PREFIX", "FA")
    CREDIT_NOTE_PREFIX = os.environ.get("CREDIT_NOTE_PREFIX", "AVOIR")
    RECEIPT_PREFIX = os.environ.get("RECEIPT_PREFIX", "RC")
    CURRENCY_SYMBOL = os.environ.get("CURRENCY_SYMBOL", "FCFA")
