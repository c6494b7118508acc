# Overview: Retry and locking helpers shared by every state-changing service.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


logger = logging.getLogger(__name__)

# Lock contention ("database is locked", deadlocks) and optimistic-lock misses.
# Domain errors are never retried.
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a unit of DB work, retrying on lock/stale-data failures.

    The session is rolled back before each retry, so `func` must rebuild all
    of its state from the database on every call.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "Retrying after %s (attempt %s/%s)", type(exc).__name__, attempt + 1, attempts
            )
            time.sleep(backoff_base * (2 ** attempt))


def commit_or_rollback():
    """
    Commit the current session; on a lock/stale-data failure roll back and
    re-raise.

    A failed commit is never replayed: after the rollback the session holds
    nothing to commit. Callers report the error as a retryable conflict.
    """
    try:
        db.session.commit()
    except RETRYABLE_ERRORS as exc:
        db.session.rollback()
        logger.warning("Commit failed with %s; changes rolled back", type(exc).__name__)
        raise
