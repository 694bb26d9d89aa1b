"""Store Service models package."""

from services.store_service.models.catalog import Product, ProductVariant
from services.store_service.models.commerce import Cart, Order
from services.store_service.models.enums import (
    IdempotencyStatus,
    LifecycleStatus,
    OrderStatus,
    legacy_status_for,
)
from services.store_service.models.guards import IdempotencyRecord, RateLimitCounter
from services.store_service.models.promotions import DiscountCode

__all__ = [
    "Cart",
    "DiscountCode",
    "IdempotencyRecord",
    "IdempotencyStatus",
    "LifecycleStatus",
    "Order",
    "OrderStatus",
    "Product",
    "ProductVariant",
    "RateLimitCounter",
    "legacy_status_for",
]
