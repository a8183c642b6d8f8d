# Overview: Locking, retry and savepoint helpers for multi-row stock and document writes.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    StockItem also carries a version column, so a lost update still fails
    with StaleDataError on SQLite.
    """
    return query.with_for_update()


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on: tuple = ()):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and any extra `retry_on` types, e.g.
    IntegrityError for a document number taken by a concurrent writer.
    The session is rolled back before each retry and before the last error
    propagates. func must be safe to re-run from scratch.
    """
    retryable = RETRYABLE_ERRORS + tuple(retry_on)
    for attempt in range(attempts):
        try:
            return func()
        except retryable:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


def run_in_savepoint(func):
    """
    Run func inside a nested transaction.

    On error only the savepoint is rolled back; work flushed earlier in the
    outer transaction survives and the exception propagates.
    """
    with db.session.begin_nested():
        return func()


def is_unique_violation(exc, *markers: str) -> bool:
    """
    True when an IntegrityError names one of `markers`.

    SQLite reports "UNIQUE constraint failed: table.column", PostgreSQL the
    constraint name, so pass both.
    """
    message = str(getattr(exc, "orig", None) or exc)
    return any(marker in message for marker in markers)
