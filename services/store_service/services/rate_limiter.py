"""Fixed-window rate limiter backed by the database.

Counters are keyed by ``subject:action``. A window opens on the first call and
resets once it has fully elapsed, so up to twice the limit can pass around a
window boundary.
"""

from dataclasses import dataclass
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import epoch_ms
from libs.common.logging import get_logger
from libs.db.transaction import RetryTransaction, TransactionFailed, run_in_transaction
from services.store_service.errors import ErrorCode, StoreError
from services.store_service.models import RateLimitCounter
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

FIVE_MINUTES_MS = 5 * 60 * 1000
ONE_MINUTE_MS = 60 * 1000

# action -> (limit, window_ms)
ACTION_LIMITS: dict[str, tuple[int, int]] = {
    "fulfill": (30, FIVE_MINUTES_MS),
    "refund": (10, FIVE_MINUTES_MS),
    "update_status": (60, FIVE_MINUTES_MS),
    "cancel": (20, FIVE_MINUTES_MS),
    "create_order": (30, ONE_MINUTE_MS),
}


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after_ms: int = 0
    # True when the counter store was unavailable and the check was bypassed
    skipped: bool = False


async def check_rate_limit(
    db: AsyncSession,
    subject: str,
    action: str,
    *,
    limit: int,
    window_ms: int,
    now_ms: Optional[int] = None,
    strict: Optional[bool] = None,
) -> RateLimitDecision:
    """Count one call against ``subject:action`` and decide whether it may proceed."""
    key = f"{subject}:{action}"
    now = epoch_ms() if now_ms is None else now_ms

    async def work(session: AsyncSession) -> RateLimitDecision:
        counter = (
            await session.execute(
                select(RateLimitCounter)
                .where(RateLimitCounter.key == key)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

        if counter is None:
            session.add(
                RateLimitCounter(key=key, count=1, started_at=now, window_ms=window_ms)
            )
            try:
                await session.flush()
            except IntegrityError as exc:
                raise RetryTransaction(f"counter {key} created concurrently") from exc
            return RateLimitDecision(allowed=True, remaining=limit - 1)

        if now - counter.started_at >= counter.window_ms:
            counter.count = 1
            counter.started_at = now
            counter.window_ms = window_ms
            return RateLimitDecision(allowed=True, remaining=limit - 1)

        if counter.count + 1 > limit:
            retry_after = counter.started_at + counter.window_ms - now
            return RateLimitDecision(allowed=False, remaining=0, retry_after_ms=retry_after)

        counter.count += 1
        return RateLimitDecision(allowed=True, remaining=limit - counter.count)

    try:
        return await run_in_transaction(db, work)
    except (SQLAlchemyError, TransactionFailed) as exc:
        if strict if strict is not None else get_settings().RATE_LIMIT_STRICT:
            raise StoreError(
                ErrorCode.UPSTREAM_FAILURE, "Rate limit store unavailable"
            ) from exc
        logger.warning("Rate limit store unavailable for %s, allowing: %s", key, exc)
        return RateLimitDecision(allowed=True, remaining=limit, skipped=True)


async def enforce_rate_limit(
    db: AsyncSession, subject: str, action: str, *, now_ms: Optional[int] = None
) -> RateLimitDecision:
    """Apply the configured limit for ``action``; raise RATE_LIMITED when exceeded."""
    limit, window_ms = ACTION_LIMITS[action]
    decision = await check_rate_limit(
        db, subject, action, limit=limit, window_ms=window_ms, now_ms=now_ms
    )
    if not decision.allowed:
        logger.warning("Rate limit hit for %s:%s", subject, action)
        raise StoreError(
            ErrorCode.RATE_LIMITED,
            "Too many requests",
            retry_after_ms=decision.retry_after_ms,
        )
    return decision
