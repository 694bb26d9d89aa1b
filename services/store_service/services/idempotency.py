"""Idempotency guard for payment-adjacent mutations.

A caller-supplied key maps to one stored outcome. The first request claims the
key (``in_progress``) in its own committed transaction, runs the operation and
stores the response; later requests with the same key replay that response
instead of re-running the side effects. A request that arrives while the first
is still running gets a "pending" answer immediately rather than waiting.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import ensure_utc, utc_now
from libs.common.logging import get_logger
from services.store_service.errors import ErrorCode, StoreError
from services.store_service.models import IdempotencyRecord, IdempotencyStatus
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

PENDING_PAYLOAD = {"ok": False, "pending": True, "message": "Operation in progress"}

Operation = Callable[[], Awaitable[dict[str, Any]]]


@dataclass
class IdempotentResult:
    payload: dict[str, Any]
    reused: bool = False
    pending: bool = False
    degraded: bool = False


@dataclass
class _Claim:
    acquired: bool
    record: Optional[IdempotencyRecord] = None


async def _claim(
    db: AsyncSession, key: str, operation_name: Optional[str], ttl: timedelta
) -> _Claim:
    """Take ownership of ``key`` or report the record that already owns it.

    Failed and expired records are taken over. Losing an insert race to a
    concurrent claimer counts as not acquired.
    """
    now = utc_now()
    record = (
        await db.execute(
            select(IdempotencyRecord)
            .where(IdempotencyRecord.key == key)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()

    if record is not None:
        live = ensure_utc(record.expires_at) > now
        if live and record.status in (
            IdempotencyStatus.COMPLETED,
            IdempotencyStatus.IN_PROGRESS,
        ):
            await db.commit()
            return _Claim(acquired=False, record=record)

        record.status = IdempotencyStatus.IN_PROGRESS
        record.operation = operation_name
        record.response = None
        record.error = None
        record.created_at = now
        record.completed_at = None
        record.failed_at = None
        record.expires_at = now + ttl
    else:
        db.add(
            IdempotencyRecord(
                key=key,
                operation=operation_name,
                status=IdempotencyStatus.IN_PROGRESS,
                created_at=now,
                expires_at=now + ttl,
            )
        )

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Idempotency key %s claimed concurrently", key)
        return _Claim(acquired=False)
    return _Claim(acquired=True)


async def _finish(
    db: AsyncSession,
    key: str,
    status: IdempotencyStatus,
    *,
    response: Optional[dict] = None,
    error: Optional[dict] = None,
) -> None:
    record = await db.get(IdempotencyRecord, key, with_for_update=True)
    if record is None:
        return
    now = utc_now()
    record.status = status
    if status == IdempotencyStatus.COMPLETED:
        record.response = response
        record.completed_at = now
    else:
        record.error = error
        record.failed_at = now
    await db.commit()


async def with_idempotency(
    db: AsyncSession,
    key: Optional[str],
    operation: Operation,
    *,
    operation_name: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
    strict: Optional[bool] = None,
) -> IdempotentResult:
    """Run ``operation`` at most once per ``key``.

    1. No key: run directly, nothing persisted.
    2. Completed record within TTL: replay its response.
    3. In-progress record within TTL: return the pending sentinel.
    4. Otherwise claim, run, and store the outcome. Failures are recorded and
       re-raised; the key stays retryable.

    If the record store itself fails, degraded mode runs the operation without
    the guard and strict mode refuses with UPSTREAM_FAILURE.
    """
    if not key:
        return IdempotentResult(payload=await operation())

    settings = get_settings()
    ttl = timedelta(seconds=ttl_seconds or settings.IDEMPOTENCY_TTL_SECONDS)
    strict = settings.IDEMPOTENCY_STRICT if strict is None else strict

    try:
        claim = await _claim(db, key, operation_name, ttl)
    except SQLAlchemyError as exc:
        await db.rollback()
        if strict:
            raise StoreError(
                ErrorCode.UPSTREAM_FAILURE, "Idempotency store unavailable"
            ) from exc
        logger.warning("Idempotency store unavailable, running %s unguarded: %s", key, exc)
        return IdempotentResult(payload=await operation(), degraded=True)

    if not claim.acquired:
        record = claim.record
        if record is not None and record.status == IdempotencyStatus.COMPLETED:
            logger.info("Replaying stored response for idempotency key %s", key)
            return IdempotentResult(payload=dict(record.response or {}), reused=True)
        return IdempotentResult(payload=dict(PENDING_PAYLOAD), reused=True, pending=True)

    try:
        payload = await operation()
    except Exception as exc:
        await db.rollback()
        error = {"message": str(exc), "code": getattr(exc, "code", None)}
        try:
            await _finish(db, key, IdempotencyStatus.FAILED, error=error)
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Could not record failure for idempotency key %s", key)
        raise

    try:
        await _finish(db, key, IdempotencyStatus.COMPLETED, response=payload)
    except SQLAlchemyError:
        # The side effects are committed; the key stays in_progress until it expires
        await db.rollback()
        logger.exception("Could not store response for idempotency key %s", key)
    return IdempotentResult(payload=payload)
