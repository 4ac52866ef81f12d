# Overview: Service-layer helpers for row locking and retrying contended transactions.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import ConflictingUpdate
from .event_service import discard_pending_events, dispatch_pending_events


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Rows that matter also carry a version_id column, so on SQLite a concurrent
    writer still loses with StaleDataError.

    populate_existing() refreshes rows already in the identity map, so state
    read earlier in the same session (e.g. before a carrier call) is re-read.
    """
    return query.with_for_update().populate_existing()


def begin_write_transaction():
    """
    Take the database write lock before reading rows that will be modified.

    NOTE: SQLite has no row locks; BEGIN IMMEDIATE serializes writers so a
    second writer re-reads committed state instead of racing the first.
    Must be the first statement of the unit of work.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def _rollback():
    db.session.rollback()
    discard_pending_events()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors raised by func are not
    retried; the session is rolled back and the error propagates.

    Domain events recorded by func are dispatched once func returns
    (func commits) and dropped whenever the session is rolled back.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            result = func()
        except (OperationalError, StaleDataError) as exc:
            _rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                if isinstance(exc, StaleDataError):
                    raise ConflictingUpdate(
                        "Row was modified concurrently; re-read and retry",
                        details={"attempts": attempts},
                    ) from exc
                raise
            time.sleep(backoff_base * (2 ** attempt))
            continue
        except Exception:
            _rollback()
            raise
        dispatch_pending_events()
        return result
    if last_exc:
        raise last_exc
