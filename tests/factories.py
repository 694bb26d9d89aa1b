"""
Model factories for creating valid test data.

Every factory produces a valid, insertable SQLAlchemy model instance.
Override any field via kwargs.

Usage:
    product = ProductFactory.create(stock=10, reserved=2)
    db_session.add(product)
    await db_session.commit()
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def minutes_ago(minutes: int) -> datetime:
    return _now() - timedelta(minutes=minutes)


def order_line(product, qty: int = 1, variant=None, **overrides) -> dict:
    """An order line snapshot pointing at a product (and variant)."""
    line = {
        "product_id": str(product.id),
        "variant_id": str(variant.id) if variant is not None else None,
        "qty": qty,
        "price": product.price,
        "sku": product.sku,
        "name": product.name,
        "weight": product.weight_grams,
        "tax_code": product.tax_code,
        "category": product.category,
    }
    line.update(overrides)
    return line


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class ProductFactory:
    @staticmethod
    def create(**overrides):
        from services.store_service.models import Product

        defaults = {
            "id": _uuid(),
            "seller_user_id": "seller-1",
            "name": "Test Product",
            "sku": f"SKU-{uuid.uuid4().hex[:6].upper()}",
            "price": 1000,
            "weight_grams": 500,
            "tax_code": None,
            "category": None,
            "stock": 10,
            "reserved": 0,
            "created_at": _now(),
            "updated_at": _now(),
        }
        defaults.update(overrides)
        return Product(**defaults)


class ProductVariantFactory:
    @staticmethod
    def create(product_id=None, **overrides):
        from services.store_service.models import ProductVariant

        defaults = {
            "id": _uuid(),
            "product_id": product_id or _uuid(),
            "name": "Medium",
            "sku": f"VAR-{uuid.uuid4().hex[:6].upper()}",
            "price": None,
            "weight_grams": None,
            "stock": 10,
            "reserved": 0,
            "created_at": _now(),
            "updated_at": _now(),
        }
        defaults.update(overrides)
        return ProductVariant(**defaults)


class DiscountCodeFactory:
    @staticmethod
    def create(**overrides):
        from services.store_service.models import DiscountCode

        defaults = {
            "id": _uuid(),
            "seller_user_id": "seller-1",
            "code": "SAVE10",
            "type": "Percent",
            "amount": 10,
            "stackable": True,
            "min_spend": None,
            "non_stacking_group": None,
            "exclude_products": [],
            "exclude_categories": [],
            "is_private": False,
            "active": True,
            "created_at": _now(),
            "updated_at": _now(),
        }
        defaults.update(overrides)
        return DiscountCode(**defaults)


# ---------------------------------------------------------------------------
# Commerce
# ---------------------------------------------------------------------------


class OrderFactory:
    @staticmethod
    def create(**overrides):
        from services.store_service.models import LifecycleStatus, Order, legacy_status_for

        lifecycle = overrides.pop("lifecycle_status", LifecycleStatus.PENDING_PAYMENT)
        items = overrides.pop("items", [])
        subtotal = sum(li["price"] * li["qty"] for li in items)
        created_at = overrides.pop("created_at", _now())
        defaults = {
            "id": _uuid(),
            "buyer_user_id": "buyer-1",
            "seller_user_id": "seller-1",
            "site_id": None,
            "items": items,
            "subtotal": subtotal,
            "discount_amount": 0,
            "total": subtotal,
            "currency": "USD",
            "discounts": [],
            "stock_adjustments": [],
            "lifecycle_status": lifecycle,
            "status": legacy_status_for(lifecycle),
            "status_history": [
                {"from": None, "to": "pending_payment", "at": int(created_at.timestamp() * 1000)}
            ],
            "payment_reference": None,
            "refunded_amount": 0,
            "adjustments": [],
            "created_at": created_at,
            "reserved_at": created_at,
            "updated_at": created_at,
        }
        defaults.update(overrides)
        return Order(**defaults)


class CartFactory:
    @staticmethod
    def create(**overrides):
        from services.store_service.models import Cart

        defaults = {
            "id": _uuid(),
            "user_id": "buyer-1",
            "site_id": "",
            "items": [],
            "removed_lines": [],
            "discounts": [],
            "currency": "USD",
            "version": 0,
            "recoverable": False,
            "created_at": _now(),
            "updated_at": _now(),
        }
        defaults.update(overrides)
        return Cart(**defaults)


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------

SELLER_ID = "seller-1"
BUYER_ID = "buyer-1"


def make_user(
    user_id: str = BUYER_ID,
    roles: Optional[list[str]] = None,
    seller_user_id: Optional[str] = None,
    role: str = "authenticated",
):
    from libs.auth.models import AuthUser

    return AuthUser(sub=user_id, role=role, roles=roles or [], seller_user_id=seller_user_id)


def make_token(
    user_id: str = BUYER_ID,
    roles: Optional[list[str]] = None,
    seller_user_id: Optional[str] = None,
    role: str = "authenticated",
) -> str:
    """A bearer token signed with the test secret."""
    from jose import jwt
    from libs.common.config import get_settings

    settings = get_settings()
    claims = {"sub": user_id, "role": role, "roles": roles or []}
    if seller_user_id:
        claims["seller_user_id"] = seller_user_id
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers_for(user_id: str = BUYER_ID, **claims) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, **claims)}"}
