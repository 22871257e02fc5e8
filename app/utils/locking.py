"""
Row locking and contention handling for ledger mutations.

Every mutating path locks the rows it bases a decision on with
SELECT ... FOR UPDATE and holds the lock until commit. Lock order is
Reward before Balance.

SQLite ignores FOR UPDATE, so for SQLite engines each transaction is opened
with BEGIN IMMEDIATE instead, which takes the database write lock up front
and serializes writers the same way.
"""
import time
import logging
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .exceptions import LedgerContentionError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# PostgreSQL SQLSTATEs that mean "lost a lock race, try again"
LOCK_NOT_AVAILABLE = '55P03'
DEADLOCK_DETECTED = '40P01'
SERIALIZATION_FAILURE = '40001'
QUERY_CANCELED = '57014'  # statement_timeout
RETRYABLE_SQLSTATES = {LOCK_NOT_AVAILABLE, DEADLOCK_DETECTED, SERIALIZATION_FAILURE, QUERY_CANCELED}


def lock_for_update(query):
    """Apply row-level locking to a query."""
    return query.with_for_update()


def configure_engine_locking(engine) -> None:
    """Make SQLite honour the same writer serialization as FOR UPDATE."""
    if engine.dialect.name != 'sqlite':
        return

    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        # pysqlite's own BEGIN handling would defer the lock until first write
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _begin_immediate(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')

    logger.debug('SQLite engine configured for BEGIN IMMEDIATE transactions')


def is_lock_contention(exc: Exception) -> bool:
    """True when a database error means lock wait timeout or deadlock."""
    if isinstance(exc, StaleDataError):
        return True
    if not isinstance(exc, OperationalError):
        return False

    pgcode = getattr(exc.orig, 'pgcode', None) or getattr(exc.orig, 'sqlstate', None)
    if pgcode:
        return pgcode in RETRYABLE_SQLSTATES

    message = str(exc.orig).lower()
    return 'database is locked' in message or 'deadlock' in message or 'lock wait timeout' in message


def run_with_retry(func: Callable[[], T], operation: str, *, attempts: int = None,
                   backoff_base: float = None) -> T:
    """
    Run a complete ledger operation, retrying on lock contention.

    func must own its transaction (commit or roll back before returning) so
    that each retry starts from a clean session. Non-contention errors
    propagate immediately; exhausted retries raise LedgerContentionError.
    """
    if attempts is None:
        attempts = current_app.config.get('LEDGER_LOCK_RETRY_ATTEMPTS', 3)
    if backoff_base is None:
        backoff_base = current_app.config.get('LEDGER_LOCK_RETRY_BACKOFF', 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if not is_lock_contention(exc):
                raise
            if attempt >= attempts - 1:
                current_app.logger.warning(
                    f"{operation}: lock contention persisted after {attempts} attempts"
                )
                raise LedgerContentionError(operation, exc) from exc
            delay = backoff_base * (2 ** attempt)
            current_app.logger.info(
                f"{operation}: lock contention (attempt {attempt + 1}/{attempts}), retrying in {delay:.2f}s"
            )
            time.sleep(delay)

    raise LedgerContentionError(operation)
