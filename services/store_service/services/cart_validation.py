"""Checkout-time cart validation.

Re-prices a client cart from the catalog, trims it to what is in stock and
resolves its discount codes, without reserving anything. The client shows the
result and proceeds to order creation, which repeats the same checks under
row locks.
"""

import uuid
from typing import Any, Optional

from libs.common.logging import get_logger
from services.store_service.models import Product, ProductVariant
from services.store_service.services import discounts as discount_rules
from services.store_service.services import reservations
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


def _as_uuid(value) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value)) if value else None
    except ValueError:
        return None


async def _load_catalog(
    db: AsyncSession, items: list[dict]
) -> tuple[dict[str, Product], dict[str, ProductVariant]]:
    product_ids = {pid for pid in (_as_uuid(li.get("product_id")) for li in items) if pid}
    variant_ids = {vid for vid in (_as_uuid(li.get("variant_id")) for li in items) if vid}

    products: dict[str, Product] = {}
    if product_ids:
        rows = (await db.execute(select(Product).where(Product.id.in_(product_ids)))).scalars()
        products = {str(row.id): row for row in rows}

    variants: dict[str, ProductVariant] = {}
    if variant_ids:
        rows = (
            await db.execute(select(ProductVariant).where(ProductVariant.id.in_(variant_ids)))
        ).scalars()
        variants = {str(row.id): row for row in rows}
    return products, variants


def _key(product_id: str, variant_id: Optional[str]) -> tuple[str, Optional[str]]:
    return (str(product_id), str(variant_id) if variant_id else None)


async def validate_cart(
    db: AsyncSession,
    *,
    seller_user_id: str,
    items: list[dict],
    discounts: Optional[list] = None,
) -> dict[str, Any]:
    """Check a cart against the catalog, stock and the seller's discount codes.

    Lines for unknown products, other sellers' products or unknown variants are
    removed; sold-out lines are removed and over-stock quantities clamped, all
    reported in ``adjustments``. ``changed`` tells the client its view of the
    cart is stale.
    """
    products, variants = await _load_catalog(db, items)

    validated: list[dict] = []
    removed: list[str] = []
    adjustments: list[dict] = []

    for line in items:
        product_id = str(line["product_id"])
        variant_id = line.get("variant_id") or None
        product = products.get(str(_as_uuid(product_id)))
        if product is None or product.seller_user_id != seller_user_id:
            removed.append(product_id)
            adjustments.append({"product_id": product_id, "reason": "not_found"})
            continue

        variant = None
        if variant_id:
            variant = variants.get(str(_as_uuid(variant_id)))
            if variant is None or variant.product_id != product.id:
                removed.append(product_id)
                adjustments.append(
                    {
                        "product_id": product_id,
                        "variant_id": variant_id,
                        "reason": "variant_not_found",
                    }
                )
                continue

        price = variant.price if variant and variant.price is not None else product.price
        if not price or price < 0:
            removed.append(product_id)
            continue

        requested = max(1, int(line.get("qty") or 1))
        available = reservations.available(variant if variant is not None else product)
        if available <= 0:
            removed.append(product_id)
            adjustments.append(
                {
                    "product_id": product_id,
                    "variant_id": variant_id,
                    "from_qty": requested,
                    "to_qty": 0,
                    "reason": "out_of_stock",
                }
            )
            continue
        qty = requested
        if requested > available:
            adjustments.append(
                {
                    "product_id": product_id,
                    "variant_id": variant_id,
                    "from_qty": requested,
                    "to_qty": available,
                    "reason": "stock_clamped",
                }
            )
            qty = available

        name = product.name
        if variant is not None and variant.name:
            name = f"{name} - {variant.name}"
        validated.append(
            {
                "product_id": product_id,
                "variant_id": variant_id,
                "qty": qty,
                "price": price,
                "name": name,
                "category": product.category,
                "available": available,
            }
        )

    subtotal = sum(li["price"] * li["qty"] for li in validated)
    outcome = await discount_rules.resolve_discounts(
        db,
        seller_user_id=seller_user_id,
        subtotal=subtotal,
        lines=validated,
        discounts=discounts,
    )

    changed = bool(removed or adjustments)
    if not changed:
        by_key = {_key(li["product_id"], li["variant_id"]): li for li in validated}
        for line in items:
            current = by_key.get(_key(line["product_id"], line.get("variant_id")))
            if current is None or (
                line.get("price") is not None and line["price"] != current["price"]
            ):
                changed = True
                break
    if discount_rules.requested_codes(discounts) and not outcome.applied:
        changed = True

    if changed:
        logger.info(
            "Cart for seller %s changed on validation (removed=%d, adjusted=%d)",
            seller_user_id,
            len(removed),
            len(adjustments),
        )

    return {
        "ok": True,
        "items": validated,
        "subtotal": subtotal,
        "discounts": outcome.applied,
        "discount_amount": outcome.amount,
        "total": max(0, subtotal - outcome.amount),
        "changed": changed,
        "removed_item_ids": removed,
        "adjustments": adjustments,
        "rejected": outcome.rejected,
    }
