"""Reservation reaper: expire stale unpaid orders and release their holds."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from libs.common.datetime_utils import ensure_utc, epoch_ms, utc_now
from libs.common.logging import get_logger
from libs.db.transaction import TransactionFailed, run_in_transaction
from services.store_service.errors import StoreError
from services.store_service.models import LifecycleStatus, Order
from services.store_service.services import reservations
from services.store_service.services.order_lifecycle import lock_order, transition
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

DEFAULT_TTL_MINUTES = 30
DEFAULT_LIMIT = 50
REAPER_NOTE = "reservation_reaper"


@dataclass
class ReapResult:
    processed: int
    cutoff: int  # epoch ms
    expired_order_ids: list[str] = field(default_factory=list)
    failed_order_ids: list[str] = field(default_factory=list)


async def _expire_if_stale(db: AsyncSession, order_id, cutoff: datetime, now: datetime) -> bool:
    """Expire one order if it is still unpaid and older than the cutoff."""

    async def work(session: AsyncSession) -> bool:
        try:
            order = await lock_order(session, order_id)
        except StoreError:
            # Deleted since the scan
            return False
        # Paid or cancelled since the scan
        if order.lifecycle_status != LifecycleStatus.PENDING_PAYMENT:
            return False
        if ensure_utc(order.created_at) >= cutoff:
            return False
        await reservations.release_reservations(session, order.items or [])
        transition(order, LifecycleStatus.EXPIRED, now, note=REAPER_NOTE)
        return True

    return await run_in_transaction(db, work)


async def reap_reservations(
    db: AsyncSession,
    *,
    ttl_minutes: int = DEFAULT_TTL_MINUTES,
    limit: int = DEFAULT_LIMIT,
    now: Optional[datetime] = None,
) -> ReapResult:
    """Expire up to ``limit`` pending_payment orders older than ``ttl_minutes``.

    Oldest first. Each order is re-checked under its own lock, so an order
    paid between the scan and the expiry is left alone, and concurrent or
    repeated runs never expire an order twice. An order whose transaction
    fails is logged and reported in ``failed_order_ids``; the batch goes on.
    """
    now = ensure_utc(now) or utc_now()
    cutoff = now - timedelta(minutes=ttl_minutes)

    candidates = (
        await db.execute(
            select(Order.id)
            .where(
                Order.lifecycle_status == LifecycleStatus.PENDING_PAYMENT,
                Order.created_at < cutoff,
            )
            .order_by(Order.created_at)
            .limit(limit)
        )
    ).scalars().all()
    # Release the read snapshot before the per-order transactions
    await db.commit()

    expired: list[str] = []
    failed: list[str] = []
    for order_id in candidates:
        try:
            if await _expire_if_stale(db, order_id, cutoff, now):
                expired.append(str(order_id))
        except (TransactionFailed, StoreError):
            # Left pending for the next run
            logger.exception("Reaper could not expire order %s", order_id)
            failed.append(str(order_id))

    if candidates:
        logger.info(
            "Reaper expired %d of %d stale orders (ttl=%dm, failed=%d)",
            len(expired),
            len(candidates),
            ttl_minutes,
            len(failed),
        )
    return ReapResult(
        processed=len(expired),
        cutoff=epoch_ms(cutoff),
        expired_order_ids=expired,
        failed_order_ids=failed,
    )
