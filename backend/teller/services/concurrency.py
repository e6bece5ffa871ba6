# Overview: Service-layer operations for concurrency; locking and retry helpers shared by the engine.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ProviderUnavailableError
from ..extensions import db

# Failures that mean "the infrastructure broke", not "the input is wrong".
# Only these leave a transaction FAILED and eligible for retry.
INFRASTRUCTURE_ERRORS = (SQLAlchemyError, ProviderUnavailableError, TimeoutError)


def is_infrastructure_error(exc: BaseException) -> bool:
    return isinstance(exc, INFRASTRUCTURE_ERRORS)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). The session is rolled back before
    sleeping so no row locks are held during the backoff.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
