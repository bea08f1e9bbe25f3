# Overview: Service-layer helpers for row locking and transactional retry.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import Conflict


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_immediate() takes the
    database write lock up front instead. Other DBs honor the row lock.
    populate_existing() refreshes rows already in the identity map so the
    read under the lock is never a stale snapshot.
    """
    return query.with_for_update().populate_existing()


def begin_immediate() -> None:
    """
    Open the unit of work with the write lock already held (SQLite only).

    Without this, two SQLite connections can both read a stock or balance
    value before either writes it, which is a lost update.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


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


def run_in_transaction(func):
    """
    Run func as one atomic unit of work and commit it.

    - The session is rolled back on ANY exception, so nothing func wrote is
      ever partially committed.
    - Lock and optimistic-version failures are retried with backoff; once
      LOCK_RETRY_ATTEMPTS is exhausted they surface as Conflict.
    - Business errors propagate unchanged after the rollback.
    """
    attempts = current_app.config.get("LOCK_RETRY_ATTEMPTS", 3)
    backoff_base = current_app.config.get("LOCK_RETRY_BACKOFF", 0.1)

    def _op():
        try:
            begin_immediate()
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError):
            raise
        except Exception:
            db.session.rollback()
            raise

    try:
        return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
    except (OperationalError, StaleDataError) as exc:
        current_app.logger.warning("Unit of work abandoned after %s attempts: %s", attempts, exc)
        raise Conflict(
            "Concurrent modification detected; nothing was committed, please retry",
            {"attempts": attempts},
        ) from exc
