# Overview: Transaction scope, row locking and retry policy shared by every ledger mutation.

from __future__ import annotations

import logging
import time

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


class RetryableConflict(Exception):
    """
    Raised inside an operation when it lost a race it can win by starting over
    (e.g. two writers inserting the same ledger key).
    """


RETRYABLE_ERRORS = (OperationalError, StaleDataError, RetryableConflict)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id column
    on locked models turns a lost update into a StaleDataError instead.
    """
    return query.with_for_update()


def _retry_settings(attempts, backoff_base):
    if has_app_context():
        cfg = current_app.config
        if attempts is None:
            attempts = cfg.get("LEDGER_RETRY_ATTEMPTS", 3)
        if backoff_base is None:
            backoff_base = cfg.get("LEDGER_RETRY_BACKOFF_SECONDS", 0.1)
    return attempts or 3, 0.1 if backoff_base is None else backoff_base


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute one transaction scope with retry on concurrency-related failures.

    func must be self-contained: it re-reads (and locks) every row it needs
    and ends with a single commit. On any exception the session is rolled
    back, so neither the ledger rows nor the movement log keep a partial
    write. OperationalError (deadlocks, locks), StaleDataError (optimistic
    locking conflicts) and RetryableConflict are retried with exponential
    backoff; everything else propagates immediately.
    """
    attempts, backoff_base = _retry_settings(attempts, backoff_base)
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.error("Ledger transaction failed after %s attempts: %s", attempts, exc)
                raise
            logger.warning("Ledger transaction conflict (attempt %s/%s): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
