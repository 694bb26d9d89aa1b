"""Store commerce models: carts and orders."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.store_service.models.enums import (
    LifecycleStatus,
    OrderStatus,
    enum_values,
)
from sqlalchemy import Boolean, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

# JSON columns are replaced wholesale on every write, never mutated in place,
# so plain JSON (no MutableList tracking) is enough.

# ============================================================================
# CART MODELS
# ============================================================================


class Cart(Base):
    """One authoritative cart document per user (and site)."""

    __tablename__ = "store_carts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    # "" when the cart is not scoped to a site
    site_id: Mapped[str] = mapped_column(String(255), default="", server_default="")

    # [{product_id, variant_id, qty, price, line_updated_at}]
    items: Mapped[list] = mapped_column(JSONType, default=list)
    # [{key, removed_at}], most recent last
    removed_lines: Mapped[list] = mapped_column(JSONType, default=list)
    discounts: Mapped[list] = mapped_column(JSONType, default=list)
    currency: Mapped[str] = mapped_column(String(3), default="USD", server_default="USD")

    version: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    recoverable: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    last_client_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "site_id", name="unique_cart_per_user_site"),
    )

    def __repr__(self):
        return f"<Cart {self.user_id}/{self.site_id or '-'} v{self.version}>"


# ============================================================================
# ORDER MODELS
# ============================================================================


class Order(Base):
    """Orders.

    ``items`` is an immutable snapshot taken at creation. ``lifecycle_status``
    is authoritative; ``status`` mirrors it for older clients.
    """

    __tablename__ = "store_orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    buyer_user_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    seller_user_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    site_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # [{product_id, variant_id, qty, price, sku, name, weight, tax_code}]
    items: Mapped[list] = mapped_column(JSONType, nullable=False)

    # Pricing (cents)
    subtotal: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_amount: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    total: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", server_default="USD")
    discounts: Mapped[list] = mapped_column(JSONType, default=list)
    # Quantities clamped to availability at creation
    stock_adjustments: Mapped[list] = mapped_column(JSONType, default=list)

    # Status
    lifecycle_status: Mapped[LifecycleStatus] = mapped_column(
        SAEnum(
            LifecycleStatus,
            values_callable=enum_values,
            name="store_order_lifecycle_enum",
        ),
        default=LifecycleStatus.PENDING_PAYMENT,
        server_default="pending_payment",
    )
    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            values_callable=enum_values,
            name="store_order_status_enum",
        ),
        default=OrderStatus.PENDING,
        server_default="pending",
    )
    status_history: Mapped[list] = mapped_column(JSONType, default=list)

    # Payment
    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    refunded_amount: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    adjustments: Mapped[list] = mapped_column(JSONType, default=list)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    reserved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    fulfilled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expired_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        # Reaper scan
        Index("ix_store_orders_lifecycle_created", "lifecycle_status", "created_at"),
    )

    def __repr__(self):
        return f"<Order {self.id} lifecycle={self.lifecycle_status}>"
