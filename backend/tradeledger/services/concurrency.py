# Overview: Transaction coordinator; runs one ledger operation atomically with optimistic-concurrency retries.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyExhausted
from ..extensions import db

"""
Coordinator contract:

- An operation is a zero-argument callable. It performs its reads first,
  computes every new value from those reads, then stages its writes on
  db.session. It never commits.
- run_with_retry() commits once at the end. Either every staged write lands
  or none does.
- Every mutable model carries version_id_col, so an UPDATE/DELETE against a
  row another request changed since we read it raises StaleDataError at
  flush. That (and OperationalError for locked/deadlocked databases) rolls
  the session back and re-runs the whole operation from its read phase.
- Any other exception rolls back and propagates unchanged.
- Attempts and wall-clock time are bounded; running out raises
  ConcurrencyExhausted, never a partial commit.
"""

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical reads.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; version_id_col still detects
    the conflict at flush time.
    """
    return query.with_for_update()


def _setting(name: str, default):
    try:
        return current_app.config.get(name, default)
    except RuntimeError:
        return default


def run_with_retry(
    func,
    *,
    operation: str = "operation",
    attempts: int | None = None,
    backoff_base: float | None = None,
    timeout: float | None = None,
):
    """
    Execute one coordinated operation and commit it, retrying on write conflicts.

    Backoff doubles per attempt (backoff_base * 2**attempt). The timeout
    covers the whole retry loop, including sleeps.
    """
    attempts = attempts or _setting("LEDGER_RETRY_ATTEMPTS", 5)
    backoff_base = backoff_base if backoff_base is not None else _setting("LEDGER_RETRY_BACKOFF", 0.05)
    timeout = timeout if timeout is not None else _setting("LEDGER_RETRY_TIMEOUT", 10.0)

    started = time.monotonic()
    last_exc = None
    for attempt in range(attempts):
        try:
            result = func()
            db.session.commit()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            last_exc = exc
            current_app.logger.warning(
                "%s hit a write conflict (attempt %d/%d): %s",
                operation, attempt + 1, attempts, exc,
            )
            if attempt >= attempts - 1:
                break
            delay = backoff_base * (2 ** attempt)
            if time.monotonic() - started + delay > timeout:
                raise ConcurrencyExhausted(operation, attempt + 1) from exc
            time.sleep(delay)
            continue
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info("%s committed (attempt %d)", operation, attempt + 1)
        return result

    raise ConcurrencyExhausted(operation, attempts) from last_exc
