# Overview: Retry and conditional-update helpers for racing writers.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def conditional_update(query, values: dict) -> int:
    """
    Apply `values` to every row matched by `query` in one UPDATE statement
    and commit. Returns the number of rows changed.

    The WHERE clause of `query` is the precondition: two callers racing on
    the same row cannot both see a rowcount of 1.
    """
    def _op():
        changed = query.update(values, synchronize_session=False)
        db.session.commit()
        return changed
    return run_with_retry(_op)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
