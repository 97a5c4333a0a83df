# Overview: Row locks and conflict retries for the counter, posting and ledger writes.

"""
Concurrency helpers.

Stock rows are read under SELECT ... FOR UPDATE while a posting or an
adjustment is in flight. Public service operations run through
run_with_retry, which rolls the session back and replays the whole
operation when the database reports a lock conflict or a stale row.

Retry count and backoff come from DB_RETRY_ATTEMPTS / DB_RETRY_BACKOFF.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Stock


logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (OperationalError, StaleDataError)

DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF = 0.1


def lock_for_update(query):
    """
    Apply row-level locking to a query.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def lock_stock_row(product_id: int, warehouse_id: int) -> Optional[Stock]:
    """Stock row for (product, warehouse) held until the transaction ends."""
    return lock_for_update(
        db.session.query(Stock).filter_by(product_id=product_id, warehouse_id=warehouse_id)
    ).first()


def _retry_settings(attempts: Optional[int], backoff_base: Optional[float]) -> tuple[int, float]:
    config = current_app.config if has_app_context() else {}
    if attempts is None:
        attempts = int(config.get("DB_RETRY_ATTEMPTS", DEFAULT_ATTEMPTS))
    if backoff_base is None:
        backoff_base = float(config.get("DB_RETRY_BACKOFF", DEFAULT_BACKOFF))
    return max(1, attempts), max(0.0, backoff_base)


def run_with_retry(
    func: Callable[[], T],
    *,
    attempts: Optional[int] = None,
    backoff_base: Optional[float] = None,
) -> T:
    """
    Run `func`, replaying it after lock conflicts and stale-row errors.

    The session is rolled back before every replay, so `func` must redo all
    of its work from scratch. The last error propagates once attempts run out.
    """
    attempts, backoff_base = _retry_settings(attempts, backoff_base)
    name = getattr(func, "__qualname__", "operation")

    attempt = 1
    while True:
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts:
                logger.error("%s failed after %d attempt(s): %s", name, attempt, exc.__class__.__name__)
                raise
            delay = backoff_base * (2 ** (attempt - 1))
            logger.warning(
                "%s hit %s; retrying in %.2fs (attempt %d/%d)",
                name,
                exc.__class__.__name__,
                delay,
                attempt + 1,
                attempts,
            )
            time.sleep(delay)
            attempt += 1
