"""
Unit-of-work helper with bounded retry for transient store failures.

Retry policy:
- The callable runs inside the session's transaction; commit on success
- Any exception rolls the transaction back, nothing is left half-applied
- Only transient infrastructure errors are retried (deadlock, serialization
  failure, statement timeout, dropped connection)
- Business-rule exceptions are never retried, they propagate after rollback
- On the last attempt the original exception propagates
"""
import logging
import random
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from config.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BASE_DELAY = 0.05
DEFAULT_MAX_DELAY = 1.0


def is_transient_error(exc: BaseException) -> bool:
    """Deadlocks, serialization failures and timeouts surface as OperationalError;
    a lost connection as a DBAPIError flagged connection_invalidated."""
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


def run_in_transaction(
    db: Session,
    fn: Callable[[], T],
    *,
    retries: int = None,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    label: str = "transaction",
) -> T:
    """
    Run fn() as one transaction on db and commit it.

    Args:
        db: Session the callable works with
        fn: Unit of work. Must be safe to re-run from scratch
        retries: Attempts for transient failures (default: DATABASE_TRANSACTION_RETRIES)
        label: Name used in log lines

    Returns:
        Whatever fn() returned
    """
    attempts = max(1, retries if retries is not None else settings.DATABASE_TRANSACTION_RETRIES)

    for attempt in range(1, attempts + 1):
        try:
            result = fn()
            db.commit()
            return result
        except Exception as e:
            db.rollback()
            if not is_transient_error(e) or attempt >= attempts:
                raise

            delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
            delay = max(0.0, delay + delay * 0.2 * (random.random() * 2 - 1))
            logger.warning(
                f"⚠️ Transient store failure in {label} (attempt {attempt}/{attempts}), "
                f"retrying in {delay:.2f}s: {e.__class__.__name__}"
            )
            time.sleep(delay)

    raise RuntimeError("run_in_transaction: unexpected end of retry loop")
