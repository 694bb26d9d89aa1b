"""Inventory reservation ledger.

``stock`` is sellable units and ``reserved`` is units held for unpaid orders.
Both counters change only through the primitives here, always on rows locked
inside the caller's transaction so the order-state change and the counter
changes commit together.
"""

import uuid
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from libs.common.logging import get_logger
from services.store_service.models import Product, ProductVariant
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

StockRow = Union[Product, ProductVariant]


@dataclass
class LockedLine:
    line: dict
    product: Product
    variant: Optional[ProductVariant] = None

    @property
    def target(self) -> StockRow:
        """The row whose counters this line moves."""
        return self.variant if self.variant is not None else self.product


# ---------------------------------------------------------------------------
# Counter primitives
# ---------------------------------------------------------------------------


def available(row: StockRow) -> int:
    return max(0, (row.stock or 0) - (row.reserved or 0))


def reserve(row: StockRow, qty: int) -> int:
    """Hold up to ``qty`` unreserved units. Returns the quantity granted."""
    granted = min(qty, available(row))
    if granted > 0:
        row.reserved = (row.reserved or 0) + granted
    return granted


def decrement_on_fulfill(row: StockRow, qty: int) -> None:
    """Units ship: they leave stock and stop being held. Floors at zero."""
    row.stock = max(0, (row.stock or 0) - qty)
    row.reserved = max(0, (row.reserved or 0) - qty)


def release_on_expire(row: StockRow, qty: int) -> None:
    """Drop the hold; stock is untouched since the units never left."""
    row.reserved = max(0, (row.reserved or 0) - qty)


# ---------------------------------------------------------------------------
# Row locking
# ---------------------------------------------------------------------------


def _as_uuid(value) -> Optional[uuid.UUID]:
    if value is None or value == "":
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


async def lock_line(db: AsyncSession, line: dict) -> Optional[LockedLine]:
    """Lock the product (and variant) an order line refers to.

    Returns None when the product is gone or the variant does not belong to
    it; such lines are skipped by every ledger operation.
    """
    product_id = _as_uuid(line.get("product_id"))
    if product_id is None:
        logger.warning("Skipping line with invalid product id %r", line.get("product_id"))
        return None

    product = (
        await db.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if product is None:
        logger.info("Product %s no longer exists, skipping line", product_id)
        return None

    raw_variant = line.get("variant_id")
    if not raw_variant:
        return LockedLine(line=line, product=product)

    variant_id = _as_uuid(raw_variant)
    variant = None
    if variant_id is not None:
        variant = (
            await db.execute(
                select(ProductVariant)
                .where(
                    ProductVariant.id == variant_id,
                    ProductVariant.product_id == product_id,
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
    if variant is None:
        logger.info("Variant %s not found on product %s, skipping line", raw_variant, product_id)
        return None
    return LockedLine(line=line, product=product, variant=variant)


def _lock_order(lines: Iterable[dict]) -> list[dict]:
    # A stable order across transactions keeps concurrent lockers from deadlocking
    return sorted(lines, key=lambda li: (str(li.get("product_id")), str(li.get("variant_id") or "")))


async def lock_lines(db: AsyncSession, lines: Iterable[dict]) -> list[LockedLine]:
    locked = []
    for line in _lock_order(lines):
        item = await lock_line(db, line)
        if item is not None:
            locked.append(item)
    return locked


# ---------------------------------------------------------------------------
# Order-level operations
# ---------------------------------------------------------------------------


async def apply_fulfillment(db: AsyncSession, lines: Iterable[dict]) -> int:
    """Move every line's units out of stock. Returns the number of lines applied."""
    locked = await lock_lines(db, lines)
    for item in locked:
        decrement_on_fulfill(item.target, int(item.line.get("qty") or 0))
    return len(locked)


async def release_reservations(db: AsyncSession, lines: Iterable[dict]) -> int:
    """Release every line's hold. Returns the number of lines applied."""
    locked = await lock_lines(db, lines)
    for item in locked:
        release_on_expire(item.target, int(item.line.get("qty") or 0))
    return len(locked)
