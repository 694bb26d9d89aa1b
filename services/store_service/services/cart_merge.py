"""Cart merge engine.

Reconciles edits from several devices into one cart document. Lines are keyed
by ``product_id::variant_id``; each carries a logical ``line_updated_at`` (epoch
ms) and the newest write wins. Removals leave tombstones so a stale re-add from
another device cannot resurrect a deleted line; a tombstone beats a line with
the same timestamp.

``merge_cart`` is pure. ``sync_cart`` wraps it in a locked read-modify-write.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable, Optional

from libs.common.datetime_utils import epoch_ms, utc_now
from libs.common.logging import get_logger
from libs.db.transaction import RetryTransaction, run_in_transaction
from services.store_service.models import Cart
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

TOMBSTONE_CAP = 200
DEFAULT_CURRENCY = "USD"


def line_key(product_id: str, variant_id: Optional[str] = None) -> str:
    return f"{product_id}::{variant_id or ''}"


@dataclass
class CartSnapshot:
    items: list[dict] = field(default_factory=list)
    removed_lines: list[dict] = field(default_factory=list)
    version: int = 0
    discounts: list[dict] = field(default_factory=list)
    currency: str = DEFAULT_CURRENCY
    last_client_id: Optional[str] = None
    updated_at: Optional[int] = None
    last_activity_at: Optional[int] = None
    recoverable: bool = False

    @classmethod
    def from_cart(cls, cart: Cart) -> "CartSnapshot":
        activity = epoch_ms(cart.last_activity_at) if cart.last_activity_at else None
        return cls(
            items=list(cart.items or []),
            removed_lines=list(cart.removed_lines or []),
            version=cart.version or 0,
            discounts=list(cart.discounts or []),
            currency=cart.currency or DEFAULT_CURRENCY,
            last_client_id=cart.last_client_id,
            updated_at=activity,
            last_activity_at=activity,
            recoverable=bool(cart.recoverable),
        )

    def keys(self) -> set[str]:
        return {line_key(li["product_id"], li.get("variant_id")) for li in self.items}


def merge_cart(
    snapshot: CartSnapshot,
    incoming_lines: Iterable[dict],
    removed_keys: Iterable[str],
    *,
    now: int,
    client_id: str,
    discounts: Optional[list[dict]] = None,
    currency: Optional[str] = None,
) -> CartSnapshot:
    """Apply one client's edits to a cart snapshot and return the new snapshot.

    Steps:
    1. Index current lines and tombstones by key.
    2. Record a tombstone at ``now`` for each removed key, never moving an
       existing tombstone backwards.
    3. Take each incoming line unless a tombstone at or after its timestamp
       exists; replace the current line only when strictly newer.
    4. Sweep out any line that a tombstone now covers.
    5. Keep the 200 most recent tombstones.
    6. Bump the version and stamp activity.
    """
    lines: dict[str, dict] = {}
    for line in snapshot.items:
        lines[line_key(line["product_id"], line.get("variant_id"))] = line

    tombstones: dict[str, dict] = {t["key"]: t for t in snapshot.removed_lines}

    for key in removed_keys:
        existing = tombstones.get(key)
        if existing is None or existing["removed_at"] < now:
            tombstones[key] = {"key": key, "removed_at": now}

    for line in incoming_lines:
        key = line_key(line["product_id"], line.get("variant_id"))
        updated_at = line.get("line_updated_at") or now
        tomb = tombstones.get(key)
        if tomb is not None and tomb["removed_at"] >= updated_at:
            continue
        current = lines.get(key)
        if current is None or updated_at > (current.get("line_updated_at") or 0):
            lines[key] = {
                "product_id": line["product_id"],
                "variant_id": line.get("variant_id") or None,
                "qty": line["qty"],
                "price": line.get("price"),
                "line_updated_at": updated_at,
            }

    for key, tomb in tombstones.items():
        current = lines.get(key)
        if current is not None and (
            not current.get("line_updated_at")
            or tomb["removed_at"] >= current["line_updated_at"]
        ):
            del lines[key]

    return replace(
        snapshot,
        items=list(lines.values()),
        removed_lines=list(tombstones.values())[-TOMBSTONE_CAP:],
        version=snapshot.version + 1,
        discounts=list(discounts) if discounts is not None else list(snapshot.discounts),
        currency=currency or snapshot.currency or DEFAULT_CURRENCY,
        last_client_id=client_id,
        updated_at=now,
        last_activity_at=now,
        recoverable=True,
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


async def _lock_cart(db: AsyncSession, user_id: str, site_id: str) -> Cart:
    """Load the cart row FOR UPDATE, creating it when absent."""
    query = (
        select(Cart)
        .where(Cart.user_id == user_id, Cart.site_id == site_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    cart = (await db.execute(query)).scalar_one_or_none()
    if cart is not None:
        return cart

    cart = Cart(user_id=user_id, site_id=site_id, items=[], removed_lines=[], discounts=[])
    db.add(cart)
    try:
        await db.flush()
    except IntegrityError as exc:
        # Another request created it first; the replay will lock its row
        raise RetryTransaction(f"cart for {user_id} created concurrently") from exc
    return cart


def _apply_snapshot(cart: Cart, snapshot: CartSnapshot, at: datetime) -> None:
    cart.items = snapshot.items
    cart.removed_lines = snapshot.removed_lines
    cart.version = snapshot.version
    cart.discounts = snapshot.discounts
    cart.currency = snapshot.currency
    cart.last_client_id = snapshot.last_client_id
    cart.recoverable = snapshot.recoverable
    cart.last_activity_at = at
    cart.updated_at = at


async def sync_cart(
    db: AsyncSession,
    *,
    user_id: str,
    client_id: str,
    items: list[dict[str, Any]],
    removed_keys: list[str],
    site_id: Optional[str] = None,
    discounts: Optional[list[dict]] = None,
    currency: Optional[str] = None,
) -> CartSnapshot:
    """Merge a client's edits into the stored cart under a row lock."""

    async def work(session: AsyncSession) -> CartSnapshot:
        cart = await _lock_cart(session, user_id, site_id or "")
        at = utc_now()
        merged = merge_cart(
            CartSnapshot.from_cart(cart),
            items,
            removed_keys,
            now=epoch_ms(at),
            client_id=client_id,
            discounts=discounts,
            currency=currency,
        )
        _apply_snapshot(cart, merged, at)
        return merged

    merged = await run_in_transaction(db, work)
    logger.info(
        "Cart synced for %s (client=%s, version=%d, lines=%d)",
        user_id,
        client_id,
        merged.version,
        len(merged.items),
    )
    return merged


async def touch_cart(db: AsyncSession, *, user_id: str, site_id: Optional[str] = None) -> datetime:
    """Record cart liveness, creating a minimal cart when none exists."""

    async def work(session: AsyncSession) -> datetime:
        cart = await _lock_cart(session, user_id, site_id or "")
        at = utc_now()
        cart.last_activity_at = at
        cart.recoverable = True
        return at

    return await run_in_transaction(db, work)
