# Overview: Row locking and retry helpers shared by the payout services.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger("finboost.payouts.store")

RETRYABLE_DB_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """Lock the selected batch rows until commit (a no-op on SQLite)."""
    return query.with_for_update()


def run_with_retry(op, *, attempts: int = 3, backoff_base: float = 0.1, sleep=time.sleep):
    """
    Run a payout write `op` as one transaction, retrying lock and version conflicts.

    `op` must commit its own work. Any exception rolls the session back, so
    a retry starts from committed state; non-retryable errors propagate
    after the rollback.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return op()
        except RETRYABLE_DB_ERRORS as e:
            db.session.rollback()
            if attempt >= attempts:
                logger.error("Payout write gave up after %d attempts: %s", attempt, e)
                raise
            logger.warning("Payout write conflict (attempt %d/%d): %s", attempt, attempts, e)
            sleep(backoff_base * (2 ** (attempt - 1)))
        except Exception:
            db.session.rollback()
            raise
