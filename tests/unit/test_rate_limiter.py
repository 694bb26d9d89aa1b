"""Unit tests for the database-backed rate limiter."""

import pytest
from libs.db.transaction import TransactionFailed
from services.store_service.errors import ErrorCode, StoreError
from services.store_service.models import RateLimitCounter
from services.store_service.services import rate_limiter
from services.store_service.services.rate_limiter import (
    check_rate_limit,
    enforce_rate_limit,
)
from sqlalchemy import select

T0 = 1_700_000_000_000


async def _hit(db, at, subject="seller-1", action="refund"):
    return await check_rate_limit(db, subject, action, limit=3, window_ms=1000, now_ms=at)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_window_allows_limit_then_rejects(db_session):
    decisions = [await _hit(db_session, T0 + offset) for offset in (0, 100, 200)]
    assert [d.allowed for d in decisions] == [True, True, True]
    assert [d.remaining for d in decisions] == [2, 1, 0]

    rejected = await _hit(db_session, T0 + 300)
    assert rejected.allowed is False
    assert rejected.retry_after_ms == 700


@pytest.mark.asyncio
@pytest.mark.unit
async def test_rejection_does_not_consume_budget(db_session):
    for offset in (0, 1, 2, 3, 4):
        await _hit(db_session, T0 + offset)

    counter = (
        await db_session.execute(
            select(RateLimitCounter)
            .where(RateLimitCounter.key == "seller-1:refund")
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert counter.count == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_window_resets_once_elapsed(db_session):
    for offset in (0, 100, 200):
        await _hit(db_session, T0 + offset)

    assert (await _hit(db_session, T0 + 999)).allowed is False
    fresh = await _hit(db_session, T0 + 1000)
    assert fresh.allowed is True
    assert fresh.remaining == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_subjects_and_actions_are_independent(db_session):
    for offset in (0, 1, 2):
        await _hit(db_session, T0 + offset)

    assert (await _hit(db_session, T0 + 3, subject="seller-2")).allowed is True
    assert (await _hit(db_session, T0 + 3, action="fulfill")).allowed is True


@pytest.mark.asyncio
@pytest.mark.unit
async def test_enforce_raises_rate_limited(db_session):
    for i in range(10):
        await enforce_rate_limit(db_session, "seller-1", "refund", now_ms=T0 + i)

    with pytest.raises(StoreError) as exc_info:
        await enforce_rate_limit(db_session, "seller-1", "refund", now_ms=T0 + 10)

    err = exc_info.value
    assert err.error_code == ErrorCode.RATE_LIMITED
    assert err.status_code == 429
    assert err.retryable is True
    assert err.extra["retry_after_ms"] == 5 * 60 * 1000 - 10


@pytest.mark.asyncio
@pytest.mark.unit
async def test_store_failure_allows_unless_strict(db_session, monkeypatch):
    async def broken(db, work, **kwargs):
        raise TransactionFailed("database unavailable", 1)

    monkeypatch.setattr(rate_limiter, "run_in_transaction", broken)

    decision = await _hit(db_session, T0)
    assert decision.allowed is True
    assert decision.skipped is True

    with pytest.raises(StoreError) as exc_info:
        await check_rate_limit(
            db_session, "seller-1", "refund", limit=3, window_ms=1000, strict=True
        )
    assert exc_info.value.error_code == ErrorCode.UPSTREAM_FAILURE
