# Overview: Row locks and conflict retries for document numbering and sale completion.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

# Lock timeouts, deadlocks and version_id mismatches
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """Row lock for records a replay or completion mutates. SQLite ignores it."""
    return query.with_for_update()


def run_with_retry(func, *, label: str = "db operation", attempts: int = 3, backoff_base: float = 0.1):
    """
    Run `func`, rolling back and retrying when the database reports a conflict.

    Sleeps backoff_base * 2**n between attempts and re-raises the last
    error once `attempts` is used up. `func` must be safe to run again
    from a clean session.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                current_app.logger.error("%s gave up after %d attempts: %s", label, attempts, exc)
                raise
            current_app.logger.warning(
                "%s hit %s (attempt %d/%d), retrying", label, exc.__class__.__name__, attempt, attempts
            )
            time.sleep(backoff_base * (2 ** (attempt - 1)))
