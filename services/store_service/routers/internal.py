"""Internal store routes for operators and other services (admin/service role only)."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.db.session import get_async_db
from services.store_service.schemas import (
    MarkPaidRequest,
    OrderActionResponse,
    ReapRequest,
    ReapResponse,
)
from services.store_service.services import order_lifecycle
from services.store_service.services.reaper import reap_reservations
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/internal", tags=["store-internal"])


@router.post("/reservations/reap", response_model=ReapResponse)
async def reap(
    payload: Optional[ReapRequest] = None,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Expire stale pending_payment orders and release their reservations."""
    settings = get_settings()
    payload = payload or ReapRequest()
    result = await reap_reservations(
        db,
        ttl_minutes=payload.ttl_minutes or settings.RESERVATION_TTL_MINUTES,
        limit=payload.limit or settings.REAPER_BATCH_LIMIT,
    )
    return ReapResponse(
        processed=result.processed,
        cutoff=result.cutoff,
        expired_order_ids=result.expired_order_ids,
        failed_order_ids=result.failed_order_ids,
    )


@router.post(
    "/orders/{order_id}/mark-paid",
    response_model=OrderActionResponse,
    response_model_exclude_none=True,
)
async def mark_paid(
    order_id: uuid.UUID,
    payload: MarkPaidRequest,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Record a captured payment (called by the payment webhook handler)."""
    return await order_lifecycle.mark_order_paid(
        db,
        order_id=order_id,
        payment_reference=payload.payment_reference,
        note=payload.note,
    )
