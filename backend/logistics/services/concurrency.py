# Overview: Row locking and retry helpers shared by every cash-affecting service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

# Errors worth retrying: lock timeouts/deadlocks and Order.version_id conflicts
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on the cashbox or order row.

    Lock order for cash-affecting work is always: cashbox row, then order row.
    NOTE: SQLite ignores FOR UPDATE; Postgres honors it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run one unit of cash/order work, retrying retryable errors with
    exponential backoff.

    The session is rolled back before each retry, and on any other
    exception before it propagates, so a failed unit never leaves half
    of its writes pending.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            current_app.logger.warning(
                "Retrying %s after %s (attempt %d/%d)",
                getattr(func, "__name__", "unit of work"), type(exc).__name__, attempt, attempts,
            )
            time.sleep(backoff_base * (2 ** (attempt - 1)))
        except Exception:
            db.session.rollback()
            raise
