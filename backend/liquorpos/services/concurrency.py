# Overview: Transaction serialization and retry helpers shared by the ledger and sales services.

from __future__ import annotations

import logging
import time

from sqlalchemy import event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

# Lock/deadlock errors, optimistic-lock misses, and losing a (upc, sequence) race
RETRYABLE_ERRORS = (OperationalError, StaleDataError, IntegrityError)


def install_sqlite_write_serialization(engine, *, busy_timeout: float = 15.0) -> None:
    """
    Make every SQLite transaction a write transaction.

    pysqlite defers BEGIN until the first write, so two connections can both
    read the same balance before either writes. Issuing BEGIN IMMEDIATE
    takes the database write lock up front, so a read-compute-write for a
    product is strictly ordered against every other writer. Waiting writers
    block for up to busy_timeout seconds before raising OperationalError.

    No-op for other dialects; they rely on lock_for_update().
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout * 1000)}")
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=RETRYABLE_ERRORS):
    """
    Execute a DB operation with retry on concurrency-related failures.

    func must do its own reads, so each attempt starts from fresh state.
    The session is rolled back before every retry.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.info("Retrying after %s (attempt %d of %d)", type(exc).__name__, attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc

