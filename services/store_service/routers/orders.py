"""Store orders router: creation and seller-side lifecycle actions.

Mutations accept an ``Idempotency-Key`` header; a retry with the same key
replays the first response instead of repeating side effects.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.store_service.routers._helpers import (
    ensure_user_match,
    idempotency_key_header,
    run_guarded,
    scope_key,
)
from services.store_service.schemas import (
    CreateOrderRequest,
    CreateOrderResponse,
    OrderActionRequest,
    OrderActionResponse,
    RefundRequest,
    UpdateStatusRequest,
)
from services.store_service.services import order_lifecycle
from services.store_service.services.payments import (
    PaymentGateway,
    get_payment_gateway,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["store"])


@router.post(
    "/orders",
    response_model=CreateOrderResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    payload: CreateOrderRequest,
    idempotency_key: Optional[str] = Depends(idempotency_key_header),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Reserve stock and open a pending_payment order."""
    ensure_user_match(current_user, payload.user_id)

    async def operation():
        return await order_lifecycle.create_order(
            db,
            buyer_user_id=current_user.user_id,
            seller_user_id=payload.seller_user_id,
            site_id=payload.site_id,
            items=[line.model_dump() for line in payload.items],
            discounts=[d.model_dump() for d in payload.discounts],
            currency=payload.currency,
        )

    return await run_guarded(
        db,
        user=current_user,
        action="create_order",
        idempotency_key=idempotency_key,
        operation=operation,
    )


@router.post(
    "/orders/{order_id}/fulfill",
    response_model=OrderActionResponse,
    response_model_exclude_none=True,
)
async def fulfill_order(
    order_id: uuid.UUID,
    payload: Optional[OrderActionRequest] = None,
    idempotency_key: Optional[str] = Depends(idempotency_key_header),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Ship a paid order (seller or admin)."""
    ensure_user_match(current_user, payload.user_id if payload else None)

    async def operation():
        return await order_lifecycle.fulfill_order(db, user=current_user, order_id=order_id)

    return await run_guarded(
        db,
        user=current_user,
        action="fulfill",
        idempotency_key=idempotency_key,
        operation=operation,
    )


@router.post(
    "/orders/{order_id}/refund",
    response_model=OrderActionResponse,
    response_model_exclude_none=True,
)
async def refund_order(
    order_id: uuid.UUID,
    payload: RefundRequest,
    idempotency_key: Optional[str] = Depends(idempotency_key_header),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Refund part of a paid order through the payment gateway (seller or admin)."""
    ensure_user_match(current_user, payload.user_id)

    async def operation():
        return await order_lifecycle.refund_order(
            db,
            user=current_user,
            order_id=order_id,
            amount=payload.amount,
            gateway=gateway,
            idempotency_key=scope_key(current_user, "refund", idempotency_key),
        )

    return await run_guarded(
        db,
        user=current_user,
        action="refund",
        idempotency_key=idempotency_key,
        operation=operation,
    )


@router.post(
    "/orders/{order_id}/status",
    response_model=OrderActionResponse,
    response_model_exclude_none=True,
)
async def update_order_status(
    order_id: uuid.UUID,
    payload: UpdateStatusRequest,
    idempotency_key: Optional[str] = Depends(idempotency_key_header),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Record a status change, manual refund or adjustments (seller or admin)."""
    ensure_user_match(current_user, payload.user_id)

    async def operation():
        return await order_lifecycle.update_order_status(
            db,
            user=current_user,
            order_id=order_id,
            lifecycle_status=payload.lifecycle_status,
            refund_amount=payload.refund_amount,
            adjustments=[adj.model_dump() for adj in payload.adjustments],
            note=payload.note,
        )

    return await run_guarded(
        db,
        user=current_user,
        action="update_status",
        idempotency_key=idempotency_key,
        operation=operation,
    )


@router.post(
    "/orders/{order_id}/cancel",
    response_model=OrderActionResponse,
    response_model_exclude_none=True,
)
async def cancel_order(
    order_id: uuid.UUID,
    payload: Optional[OrderActionRequest] = None,
    idempotency_key: Optional[str] = Depends(idempotency_key_header),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Cancel an unpaid order (buyer, seller or admin)."""
    ensure_user_match(current_user, payload.user_id if payload else None)

    async def operation():
        return await order_lifecycle.cancel_order(db, user=current_user, order_id=order_id)

    return await run_guarded(
        db,
        user=current_user,
        action="cancel",
        idempotency_key=idempotency_key,
        operation=operation,
    )
