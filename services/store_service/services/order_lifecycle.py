"""Order lifecycle: creation, payment, fulfillment, refunds, cancellation.

States::

    pending_payment -> paid -> fulfilled
    pending_payment -> expired          (reaper)
    pending_payment -> cancelled
    paid -> refunded_partial            (cumulative refunded_amount)

Every operation runs as one transaction that locks the order row and the
product/variant rows its lines touch, so a lifecycle change and its inventory
effects commit together or not at all.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from libs.auth.models import AuthUser
from libs.common.datetime_utils import epoch_ms, utc_now
from libs.common.logging import get_logger
from libs.db.transaction import run_in_transaction
from services.store_service.errors import ErrorCode, StoreError
from services.store_service.models import LifecycleStatus, Order, legacy_status_for
from services.store_service.services import discounts as discount_rules
from services.store_service.services import reservations
from services.store_service.services.payments import PaymentGateway, PaymentGatewayError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

HISTORY_CAP = 200
ADJUSTMENTS_CAP = 500

FULFILLABLE = {LifecycleStatus.PAID, LifecycleStatus.REFUNDED_PARTIAL}
REFUNDABLE = {
    LifecycleStatus.PAID,
    LifecycleStatus.FULFILLED,
    LifecycleStatus.REFUNDED_PARTIAL,
}
ALREADY_PAID = REFUNDABLE

# Moves allowed through the generic status endpoint. Fulfilment, expiry and
# cancellation carry inventory effects and have their own operations.
STATUS_UPDATE_TRANSITIONS: dict[LifecycleStatus, set[LifecycleStatus]] = {
    LifecycleStatus.PENDING_PAYMENT: {LifecycleStatus.PAID},
    LifecycleStatus.PAID: {LifecycleStatus.REFUNDED_PARTIAL},
}

_TIMESTAMP_FIELD = {
    LifecycleStatus.PAID: "paid_at",
    LifecycleStatus.FULFILLED: "fulfilled_at",
    LifecycleStatus.EXPIRED: "expired_at",
    LifecycleStatus.CANCELLED: "cancelled_at",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def authorize_order_actor(
    user: AuthUser, order: Order, *, allow_buyer: bool = False, action: str = "mutate"
) -> str:
    """Return who the caller acts as on this order, or raise FORBIDDEN.

    Admins and the order's seller may act; the buyer only where allowed.
    """
    if user.is_admin:
        return "admin"
    if user.is_seller and order.seller_user_id == user.seller_id:
        return "seller"
    if allow_buyer and order.buyer_user_id == user.user_id:
        return "buyer"
    raise StoreError(ErrorCode.FORBIDDEN, f"Not authorized to {action} this order")


def append_history(
    order: Order,
    *,
    from_status: Optional[str],
    to_status: str,
    at: datetime,
    note: Optional[str] = None,
    refund_amount: Optional[int] = None,
) -> None:
    entry: dict[str, Any] = {"from": from_status, "to": to_status, "at": epoch_ms(at)}
    if note is not None:
        entry["note"] = note
    if refund_amount is not None:
        entry["refund_amount"] = refund_amount
    order.status_history = (list(order.status_history or []) + [entry])[-HISTORY_CAP:]


def set_lifecycle(order: Order, target: LifecycleStatus, at: datetime) -> None:
    """Move the authoritative state and keep the legacy mirror in step."""
    order.lifecycle_status = target
    order.status = legacy_status_for(target)
    field = _TIMESTAMP_FIELD.get(target)
    if field:
        setattr(order, field, at)
    order.updated_at = at


def transition(
    order: Order, target: LifecycleStatus, at: datetime, note: Optional[str] = None
) -> None:
    previous = LifecycleStatus(order.lifecycle_status)
    set_lifecycle(order, target, at)
    append_history(order, from_status=previous.value, to_status=target.value, at=at, note=note)


async def lock_order(db: AsyncSession, order_id: uuid.UUID) -> Order:
    order = (
        await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if order is None:
        raise StoreError(ErrorCode.NOT_FOUND, "Order not found")
    return order


def _order_result(order: Order, **extra: Any) -> dict[str, Any]:
    return {
        "ok": True,
        "order_id": str(order.id),
        "lifecycle_status": LifecycleStatus(order.lifecycle_status).value,
        "status": legacy_status_for(order.lifecycle_status).value,
        **extra,
    }


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def create_order(
    db: AsyncSession,
    *,
    buyer_user_id: str,
    seller_user_id: str,
    items: list[dict],
    discounts: Optional[list] = None,
    currency: str = "USD",
    site_id: Optional[str] = None,
) -> dict[str, Any]:
    """Reserve stock for the requested lines and open a pending_payment order.

    Lines for missing products, foreign sellers or sold-out stock are dropped;
    quantities above availability are clamped and reported in
    ``stock_adjustments``. Prices come from the catalog and ``discounts`` only
    names codes, which are resolved against the seller's stored rules;
    codes that do not apply come back in ``rejected_discounts``.
    """

    async def work(session: AsyncSession) -> dict[str, Any]:
        # Lock in a stable order, then walk the lines as submitted
        locked: dict[int, Optional[reservations.LockedLine]] = {}
        indexed = sorted(
            enumerate(items),
            key=lambda pair: (str(pair[1].get("product_id")), str(pair[1].get("variant_id") or "")),
        )
        for index, line in indexed:
            locked[index] = await reservations.lock_line(session, line)

        final_items: list[dict] = []
        stock_adjustments: list[dict] = []
        for index, line in enumerate(items):
            item = locked[index]
            if item is None:
                continue
            if item.product.seller_user_id != seller_user_id:
                logger.warning(
                    "Product %s does not belong to seller %s, skipping",
                    item.product.id,
                    seller_user_id,
                )
                continue

            requested = int(line["qty"])
            granted = reservations.reserve(item.target, requested)
            if granted < requested:
                stock_adjustments.append(
                    {
                        "product_id": str(item.product.id),
                        "variant_id": str(item.variant.id) if item.variant else None,
                        "from_qty": requested,
                        "to_qty": granted,
                        "reason": "stock_clamped" if granted else "out_of_stock",
                    }
                )
            if granted <= 0:
                continue

            variant = item.variant
            price = variant.price if variant and variant.price is not None else item.product.price
            weight = (
                variant.weight_grams
                if variant and variant.weight_grams is not None
                else item.product.weight_grams
            )
            final_items.append(
                {
                    "product_id": str(item.product.id),
                    "variant_id": str(variant.id) if variant else None,
                    "qty": granted,
                    "price": price,
                    "sku": (variant.sku if variant else None) or item.product.sku,
                    "name": (variant.name if variant else None) or item.product.name,
                    "weight": weight,
                    "tax_code": item.product.tax_code,
                    "category": item.product.category,
                }
            )

        if not final_items:
            raise StoreError(
                ErrorCode.CONFLICT,
                "All items unavailable",
                reason="NO_AVAILABLE_ITEMS",
                stock_adjustments=stock_adjustments,
            )

        subtotal = sum(li["price"] * li["qty"] for li in final_items)
        outcome = await discount_rules.resolve_discounts(
            session,
            seller_user_id=seller_user_id,
            subtotal=subtotal,
            lines=final_items,
            discounts=discounts,
        )
        discount_amount = outcome.amount
        total = max(subtotal - discount_amount, 0)
        now = utc_now()

        order = Order(
            buyer_user_id=buyer_user_id,
            seller_user_id=seller_user_id,
            site_id=site_id,
            items=final_items,
            subtotal=subtotal,
            discount_amount=discount_amount,
            total=total,
            currency=currency,
            discounts=outcome.applied,
            stock_adjustments=stock_adjustments,
            lifecycle_status=LifecycleStatus.PENDING_PAYMENT,
            status=legacy_status_for(LifecycleStatus.PENDING_PAYMENT),
            status_history=[],
            adjustments=[],
            refunded_amount=0,
            created_at=now,
            reserved_at=now,
            updated_at=now,
        )
        append_history(
            order, from_status=None, to_status=LifecycleStatus.PENDING_PAYMENT.value, at=now
        )
        session.add(order)
        await session.flush()

        return _order_result(
            order,
            subtotal=subtotal,
            discount_amount=discount_amount,
            total=total,
            currency=currency,
            discounts=outcome.applied,
            rejected_discounts=outcome.rejected,
            stock_adjustments=stock_adjustments,
            seller_user_id=seller_user_id,
            site_id=site_id,
        )

    result = await run_in_transaction(db, work)
    logger.info(
        "Created order %s for buyer %s (seller=%s, total=%d)",
        result["order_id"],
        buyer_user_id,
        seller_user_id,
        result["total"],
    )
    return result


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------


async def mark_order_paid(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    payment_reference: str,
    note: Optional[str] = None,
) -> dict[str, Any]:
    """Record a captured payment. Idempotent: a paid order is returned as-is."""

    async def work(session: AsyncSession) -> dict[str, Any]:
        order = await lock_order(session, order_id)
        if order.lifecycle_status in ALREADY_PAID:
            return _order_result(order, already_paid=True)
        if order.lifecycle_status != LifecycleStatus.PENDING_PAYMENT:
            raise StoreError(
                ErrorCode.CONFLICT,
                f"Cannot mark a {order.lifecycle_status.value} order as paid",
            )
        order.payment_reference = payment_reference
        transition(order, LifecycleStatus.PAID, utc_now(), note=note or "payment_captured")
        return _order_result(order, already_paid=False)

    result = await run_in_transaction(db, work)
    if not result["already_paid"]:
        logger.info("Order %s marked paid (%s)", order_id, payment_reference)
    return result


# ---------------------------------------------------------------------------
# Fulfillment
# ---------------------------------------------------------------------------


async def fulfill_order(
    db: AsyncSession, *, user: AuthUser, order_id: uuid.UUID
) -> dict[str, Any]:
    """Ship a paid order: stock and holds leave the ledger for every line.

    Re-entry on an already fulfilled order reports ``already_fulfilled`` and
    changes nothing.
    """

    async def work(session: AsyncSession) -> dict[str, Any]:
        order = await lock_order(session, order_id)
        authorize_order_actor(user, order, action="fulfill")

        if order.lifecycle_status == LifecycleStatus.FULFILLED:
            return _order_result(order, already_fulfilled=True)
        if order.lifecycle_status not in FULFILLABLE:
            raise StoreError(
                ErrorCode.CONFLICT,
                "Order not paid",
                lifecycle_status=order.lifecycle_status.value,
            )

        applied = await reservations.apply_fulfillment(session, order.items or [])
        transition(order, LifecycleStatus.FULFILLED, utc_now())
        return _order_result(order, already_fulfilled=False, lines_applied=applied)

    result = await run_in_transaction(db, work)
    if not result["already_fulfilled"]:
        logger.info("Order %s fulfilled by %s", order_id, user.user_id)
    return result


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------


async def refund_order(
    db: AsyncSession,
    *,
    user: AuthUser,
    order_id: uuid.UUID,
    amount: int,
    gateway: PaymentGateway,
    idempotency_key: Optional[str] = None,
) -> dict[str, Any]:
    """Refund part of a paid order through the payment gateway.

    The gateway call happens under the order lock and the transaction is never
    replayed, so one call issues at most one refund. Repeat protection across
    calls comes from the idempotency key, which is also forwarded to the
    gateway: a retry after a lost commit gets the original refund back.
    """
    if amount <= 0:
        raise StoreError(ErrorCode.VALIDATION, "Refund amount must be positive")

    async def work(session: AsyncSession) -> dict[str, Any]:
        order = await lock_order(session, order_id)
        authorize_order_actor(user, order, action="refund")

        if not order.payment_reference:
            raise StoreError(
                ErrorCode.INVARIANT_VIOLATION, "No payment reference recorded"
            )
        if order.lifecycle_status not in REFUNDABLE:
            raise StoreError(
                ErrorCode.CONFLICT,
                f"Cannot refund a {order.lifecycle_status.value} order",
            )
        if (order.refunded_amount or 0) + amount > order.total:
            raise StoreError(
                ErrorCode.INVARIANT_VIOLATION,
                "Refund exceeds the amount charged",
                refundable=order.total - (order.refunded_amount or 0),
            )

        try:
            refund = await gateway.refund(
                order.payment_reference, amount, idempotency_key=idempotency_key
            )
        except PaymentGatewayError as exc:
            raise StoreError(ErrorCode.UPSTREAM_FAILURE, exc.message) from exc

        now = utc_now()
        previous = LifecycleStatus(order.lifecycle_status)
        target = (
            LifecycleStatus.REFUNDED_PARTIAL if previous == LifecycleStatus.PAID else previous
        )
        order.refunded_amount = (order.refunded_amount or 0) + amount
        set_lifecycle(order, target, now)
        append_history(
            order,
            from_status=previous.value,
            to_status=target.value,
            at=now,
            note="partial_refund_api",
            refund_amount=amount,
        )
        return _order_result(
            order, refund_id=refund.refund_id, refunded_amount=order.refunded_amount
        )

    result = await run_in_transaction(db, work, max_attempts=1)
    logger.info(
        "Refunded %d on order %s (refund=%s, cumulative=%d)",
        amount,
        order_id,
        result["refund_id"],
        result["refunded_amount"],
    )
    return result


# ---------------------------------------------------------------------------
# Manual status updates
# ---------------------------------------------------------------------------


async def update_order_status(
    db: AsyncSession,
    *,
    user: AuthUser,
    order_id: uuid.UUID,
    lifecycle_status: Optional[LifecycleStatus] = None,
    refund_amount: Optional[int] = None,
    adjustments: Optional[list[dict]] = None,
    note: Optional[str] = None,
) -> dict[str, Any]:
    """Seller-side bookkeeping on an order.

    Optionally moves the lifecycle (see STATUS_UPDATE_TRANSITIONS), records a
    refund made outside the gateway and appends manual adjustments. Always
    appends exactly one history entry, so repeated calls repeat the entry.
    """

    async def work(session: AsyncSession) -> dict[str, Any]:
        order = await lock_order(session, order_id)
        authorize_order_actor(user, order, action="update status")

        previous = LifecycleStatus(order.lifecycle_status)
        target = LifecycleStatus(lifecycle_status) if lifecycle_status else previous
        if target != previous and target not in STATUS_UPDATE_TRANSITIONS.get(previous, set()):
            raise StoreError(
                ErrorCode.CONFLICT,
                f"Cannot move order from {previous.value} to {target.value}",
            )

        if refund_amount:
            if not order.payment_reference:
                raise StoreError(
                    ErrorCode.INVARIANT_VIOLATION, "No payment reference recorded"
                )
            if (order.refunded_amount or 0) + refund_amount > order.total:
                raise StoreError(
                    ErrorCode.INVARIANT_VIOLATION, "Refund exceeds the amount charged"
                )
            order.refunded_amount = (order.refunded_amount or 0) + refund_amount

        now = utc_now()
        if target != previous:
            set_lifecycle(order, target, now)
        else:
            order.updated_at = now
        append_history(
            order,
            from_status=previous.value,
            to_status=target.value,
            at=now,
            note=note,
            refund_amount=refund_amount or None,
        )

        if adjustments:
            stamped = [{**adj, "at": epoch_ms(now)} for adj in adjustments]
            order.adjustments = (list(order.adjustments or []) + stamped)[-ADJUSTMENTS_CAP:]

        return _order_result(
            order,
            previous_lifecycle_status=previous.value,
            refunded_amount=order.refunded_amount,
        )

    result = await run_in_transaction(db, work)
    logger.info(
        "Order %s status updated by %s: %s -> %s",
        order_id,
        user.user_id,
        result["previous_lifecycle_status"],
        result["lifecycle_status"],
    )
    return result


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


async def cancel_order(
    db: AsyncSession, *, user: AuthUser, order_id: uuid.UUID
) -> dict[str, Any]:
    """Cancel an unpaid order and release its holds. Buyers may cancel their own."""

    async def work(session: AsyncSession) -> dict[str, Any]:
        order = await lock_order(session, order_id)
        actor = authorize_order_actor(user, order, allow_buyer=True, action="cancel")

        if order.lifecycle_status == LifecycleStatus.CANCELLED:
            return _order_result(order, already_cancelled=True)
        if order.lifecycle_status != LifecycleStatus.PENDING_PAYMENT:
            raise StoreError(ErrorCode.CONFLICT, "Cannot cancel in current state")

        await reservations.release_reservations(session, order.items or [])
        transition(order, LifecycleStatus.CANCELLED, utc_now(), note=f"{actor}_cancel")
        return _order_result(order, already_cancelled=False)

    result = await run_in_transaction(db, work)
    if not result["already_cancelled"]:
        logger.info("Order %s cancelled by %s", order_id, user.user_id)
    return result
