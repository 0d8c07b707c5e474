# Overview: Unit-of-work helpers: row locks, conflict retries and committed steps.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for balance and request rows.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id
    columns are what catch concurrent writers.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). func must be safe to re-run from
    scratch: it is called again after a rollback.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Concurrent update conflict (attempt %s/%s): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))


def run_committed(func, *, attempts: int = 3):
    """
    Run func and commit its writes as one unit of work.

    This is the boundary of one settlement "call": either everything func
    staged is committed, or the session is rolled back and the error is
    re-raised for the caller to classify.
    """
    def _op():
        result = func()
        db.session.commit()
        return result

    try:
        return run_with_retry(_op, attempts=attempts)
    except Exception:
        db.session.rollback()
        raise
