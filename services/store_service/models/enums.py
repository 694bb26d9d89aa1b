"""Enum definitions for store service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class LifecycleStatus(str, enum.Enum):
    """Authoritative order state."""

    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"
    REFUNDED_PARTIAL = "refunded_partial"
    CANCELLED = "cancelled"


class OrderStatus(str, enum.Enum):
    """Simplified status exposed to older clients."""

    PENDING = "pending"
    PAID = "paid"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class IdempotencyStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


LEGACY_STATUS = {
    LifecycleStatus.PENDING_PAYMENT: OrderStatus.PENDING,
    LifecycleStatus.PAID: OrderStatus.PAID,
    LifecycleStatus.FULFILLED: OrderStatus.FULFILLED,
    LifecycleStatus.EXPIRED: OrderStatus.EXPIRED,
    LifecycleStatus.REFUNDED_PARTIAL: OrderStatus.REFUNDED,
    LifecycleStatus.CANCELLED: OrderStatus.CANCELLED,
}


def legacy_status_for(lifecycle: LifecycleStatus) -> OrderStatus:
    return LEGACY_STATUS[LifecycleStatus(lifecycle)]
