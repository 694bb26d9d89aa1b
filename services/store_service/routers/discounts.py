"""Store discount codes router: sellers manage the codes buyers can redeem."""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.store_service.errors import ErrorCode, StoreError
from services.store_service.models import DiscountCode
from services.store_service.schemas import (
    DiscountCodeListResponse,
    DiscountCodeOut,
    DiscountCodeResponse,
    DiscountCodeUpsert,
)
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

router = APIRouter(tags=["store"])


def _owning_seller(user: AuthUser, requested: Optional[str]) -> str:
    """Sellers manage their own codes; admins must name the seller."""
    if user.is_admin:
        if not requested:
            raise StoreError(ErrorCode.VALIDATION, "seller_user_id is required")
        return requested
    if not user.is_seller:
        raise StoreError(ErrorCode.FORBIDDEN, "Only sellers can manage discount codes")
    if requested and requested != user.seller_id:
        raise StoreError(ErrorCode.FORBIDDEN, "Not authorized for this seller")
    return user.seller_id


@router.put("/discounts/{code}", response_model=DiscountCodeResponse)
async def upsert_discount_code(
    payload: DiscountCodeUpsert,
    code: str = Path(..., min_length=1, max_length=50),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Create or replace a discount code. Codes match case-insensitively."""
    seller_user_id = _owning_seller(current_user, payload.seller_user_id)

    discount = (
        await db.execute(
            select(DiscountCode).where(
                DiscountCode.seller_user_id == seller_user_id,
                func.lower(DiscountCode.code) == code.lower(),
            )
        )
    ).scalar_one_or_none()
    created = discount is None
    if created:
        discount = DiscountCode(seller_user_id=seller_user_id, code=code)
        db.add(discount)

    for field, value in payload.model_dump(exclude={"seller_user_id"}).items():
        setattr(discount, field, value)

    try:
        await db.commit()
    except IntegrityError as exc:
        # A concurrent request created the same code first
        await db.rollback()
        raise StoreError(ErrorCode.CONFLICT, "Discount code was modified concurrently") from exc
    await db.refresh(discount)
    logger.info(
        "Discount code %s %s for seller %s",
        discount.code,
        "created" if created else "updated",
        seller_user_id,
    )
    return DiscountCodeResponse(discount=DiscountCodeOut.model_validate(discount), created=created)


@router.get("/discounts", response_model=DiscountCodeListResponse)
async def list_discount_codes(
    seller_user_id: Optional[str] = Query(None),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """List a seller's discount codes, private ones included."""
    owner = _owning_seller(current_user, seller_user_id)
    rows = (
        await db.execute(
            select(DiscountCode)
            .where(DiscountCode.seller_user_id == owner)
            .order_by(DiscountCode.code)
        )
    ).scalars().all()
    return DiscountCodeListResponse(
        discounts=[DiscountCodeOut.model_validate(row) for row in rows]
    )
