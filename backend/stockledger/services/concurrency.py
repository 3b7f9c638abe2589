# Overview: Service-layer operations for concurrency; encapsulates locking, retries and transaction start.

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    Rows already in the session are refreshed from the locked read.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    covers it there.
    """
    return query.with_for_update().populate_existing()


def begin_write_transaction() -> None:
    """
    On SQLite, take the database write lock before the first read.

    BEGIN IMMEDIATE serializes writers, so a check-then-write sequence
    inside one transaction cannot interleave with another writer's.
    No-op when a transaction is already open or on other databases
    (they rely on lock_for_update).
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other failure rolls the session
    back and propagates, so no partial writes survive.
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
            logger.warning(
                "Retrying after concurrency failure (attempt %s/%s): %s",
                attempt + 1,
                attempts,
                exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc

