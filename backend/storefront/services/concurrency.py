# Overview: Transaction helpers for stock, points and raffle mutations; row locks and bounded retries.

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Deadlocks, lock timeouts and LoyaltyAccount.version_id mismatches
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """SELECT ... FOR UPDATE on PostgreSQL; a no-op on SQLite."""
    return query.with_for_update()


def run_with_retry(op: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.1) -> T:
    """
    Run op (which must commit on its own) inside a bounded retry loop.

    Variant stock, loyalty balances and raffle entries are read-modify-write,
    so a lost race shows up as one of RETRYABLE_ERRORS and op is simply run
    again from a clean session. Any other exception rolls the session back
    and propagates unchanged.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return op()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts:
                logger.error("Giving up after %s attempts: %s", attempt, exc.__class__.__name__)
                raise
            logger.warning("Retrying after %s (attempt %s of %s)", exc.__class__.__name__, attempt, attempts)
            time.sleep(backoff_base * (2 ** (attempt - 1)))
        except Exception:
            db.session.rollback()
            raise
