"""Transaction runner with retry on serialization failures.

PostgreSQL aborts a transaction with SQLSTATE 40001 (serialization failure) or
40P01 (deadlock detected) when two writers collide; the whole unit of work has
to be replayed from a fresh read. ``run_in_transaction`` does that, so the
service code above it can be written as a straight read-modify-write.
"""

from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_SQLSTATES = {"40001", "40P01"}


class RetryTransaction(Exception):
    """Raised by a unit of work that lost a race and must start over."""


class TransactionFailed(Exception):
    """The unit of work could not be committed within the retry budget."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


def is_retryable(exc: BaseException) -> bool:
    """True for write conflicts that a fresh attempt can resolve."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    # SQLite reports writer contention as a locked database
    return "database is locked" in str(orig)


async def run_in_transaction(
    db: AsyncSession,
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    max_attempts: Optional[int] = None,
) -> T:
    """Run ``work`` and commit, replaying it on retryable conflicts.

    ``work`` must do all of its reads inside the call so a replay observes the
    new pre-state. Any non-database exception rolls back and propagates
    unchanged. Non-retryable database errors, or exhausting the attempts,
    raise ``TransactionFailed``.
    """
    attempts = max_attempts or get_settings().DB_TRANSACTION_MAX_ATTEMPTS

    for attempt in range(1, attempts + 1):
        try:
            result = await work(db)
            await db.commit()
            return result
        except RetryTransaction as exc:
            await db.rollback()
            if attempt < attempts:
                logger.info("Replaying transaction (attempt %d/%d): %s", attempt, attempts, exc)
                continue
            raise TransactionFailed(str(exc), attempt) from exc
        except SQLAlchemyError as exc:
            await db.rollback()
            if is_retryable(exc) and attempt < attempts:
                logger.warning(
                    "Transaction conflict (attempt %d/%d), retrying: %s",
                    attempt,
                    attempts,
                    exc.__class__.__name__,
                )
                continue
            logger.error("Transaction failed after %d attempt(s): %s", attempt, exc)
            raise TransactionFailed(str(exc), attempt) from exc
        except BaseException:
            await db.rollback()
            raise

    raise TransactionFailed("Transaction retry budget exhausted", attempts)
