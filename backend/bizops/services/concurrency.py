# Overview: Storage scopes, row locking and retry for sales engine operations.

from __future__ import annotations

import logging
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def transaction_scope(session: Session):
    """
    One atomic unit of work on an explicitly passed session.

    Commits when the block exits normally. Any exception rolls back every
    write made in the block and is re-raised, so no partial rows survive.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


@contextmanager
def independent_session():
    """
    Fresh session bound to the engine, for follow-up work (ledger posting,
    audit writes) that must not share the caller's transaction.

    Always closed on exit; uncommitted work is discarded.
    """
    session = Session(bind=db.engine, expire_on_commit=False)
    try:
        yield session
    finally:
        session.close()


def run_with_retry(
    func,
    *,
    session: Session,
    attempts: int = 3,
    backoff_base: float = 0.1,
    retry_on: tuple = RETRYABLE_ERRORS,
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) by default; callers may widen retry_on.
    The session is rolled back before every retry.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "Retrying after storage conflict (attempt %d/%d): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
