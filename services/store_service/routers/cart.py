"""Store cart router: cross-device sync, liveness, validation and checkout estimates."""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Request
from libs.auth.dependencies import get_current_user, get_optional_user
from libs.auth.models import AuthUser
from libs.common.datetime_utils import epoch_ms
from libs.common.rate_limit import cart_limit, heartbeat_limit
from libs.db.session import get_async_db
from services.store_service.routers._helpers import ensure_user_match
from services.store_service.schemas import (
    CartHeartbeatRequest,
    CartHeartbeatResponse,
    CartOut,
    CartSyncRequest,
    CartSyncResponse,
    CartValidateRequest,
    CartValidateResponse,
    EstimateRequest,
    EstimateResponse,
    TaxBucketOut,
)
from services.store_service.services import cart_merge, cart_validation, estimator
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["store"])


@router.post("/cart/sync", response_model=CartSyncResponse)
@cart_limit
async def sync_cart(
    request: Request,
    payload: CartSyncRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Merge this device's cart edits into the user's cart."""
    ensure_user_match(current_user, payload.user_id)

    snapshot = await cart_merge.sync_cart(
        db,
        user_id=current_user.user_id,
        client_id=payload.client_id,
        site_id=payload.site_id,
        items=[line.model_dump() for line in payload.items],
        removed_keys=payload.removed_keys,
        discounts=(
            [d.model_dump() for d in payload.discounts]
            if payload.discounts is not None
            else None
        ),
        currency=payload.currency,
    )
    return CartSyncResponse(cart=CartOut(**asdict(snapshot)))


@router.post("/cart/heartbeat", response_model=CartHeartbeatResponse)
@heartbeat_limit
async def cart_heartbeat(
    request: Request,
    payload: Optional[CartHeartbeatRequest] = None,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Mark the cart as recently active (feeds abandoned-cart recovery)."""
    payload = payload or CartHeartbeatRequest()
    ensure_user_match(current_user, payload.user_id)

    written_at = await cart_merge.touch_cart(
        db, user_id=current_user.user_id, site_id=payload.site_id
    )
    return CartHeartbeatResponse(written_at=epoch_ms(written_at))


@router.post("/cart/estimate", response_model=EstimateResponse)
async def estimate_cart(
    payload: EstimateRequest,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
):
    """Estimate shipping and tax. Anonymous callers are allowed."""
    lines = None
    if payload.line_items is not None:
        lines = [
            estimator.TaxLine(
                amount=li.amount,
                quantity=li.quantity,
                tax_code=li.tax_code or estimator.DEFAULT_TAX_CODE,
            )
            for li in payload.line_items
        ]
    address = payload.shipping_address
    result = estimator.estimate(
        subtotal=payload.subtotal,
        discount_amount=payload.discount_amount,
        currency=payload.currency,
        total_weight=payload.total_weight,
        tax_codes=payload.tax_codes,
        lines=lines,
        country=address.country if address else None,
        region=address.region if address else None,
    )
    return EstimateResponse(
        shipping=result.shipping,
        tax=result.tax_total,
        tax_total=result.tax_total,
        tax_breakdown={
            code: TaxBucketOut(**asdict(bucket))
            for code, bucket in result.tax_breakdown.items()
        },
        currency=result.currency,
    )


@router.post("/cart/validate", response_model=CartValidateResponse)
@cart_limit
async def validate_cart(
    request: Request,
    payload: CartValidateRequest,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Re-price a cart from the catalog, trim it to stock and resolve discount codes."""
    return await cart_validation.validate_cart(
        db,
        seller_user_id=payload.seller_user_id,
        items=[line.model_dump() for line in payload.items],
        discounts=[d.model_dump() for d in payload.discounts],
    )
