"""Pydantic schemas for store service."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from services.store_service.models import LifecycleStatus


class StrictModel(BaseModel):
    """Request bodies reject unknown fields before anything is touched."""

    model_config = ConfigDict(extra="forbid")


class DiscountIn(StrictModel):
    # Type and amount are the seller's to set, never the buyer's
    code: str = Field(..., min_length=1, max_length=50)


class AppliedDiscount(BaseModel):
    code: str
    type: str
    amount: float
    stackable: bool = True
    non_stacking_group: Optional[str] = None
    value: int  # cents taken off


class RejectedDiscount(BaseModel):
    code: str
    reason: str


# ============================================================================
# CART SCHEMAS
# ============================================================================


class CartLineIn(StrictModel):
    product_id: str = Field(..., min_length=1, max_length=100)
    variant_id: Optional[str] = Field(None, max_length=100)
    qty: int = Field(..., ge=0)
    price: Optional[int] = Field(None, ge=0)
    # Logical timestamp (epoch ms); the server clock is used when absent
    line_updated_at: Optional[int] = Field(None, ge=0)


class CartSyncRequest(StrictModel):
    user_id: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    site_id: Optional[str] = None
    items: list[CartLineIn] = []
    removed_keys: list[str] = []
    discounts: Optional[list[DiscountIn]] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    base_version: Optional[int] = None


class CartLine(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    qty: int
    price: Optional[int] = None
    line_updated_at: int


class Tombstone(BaseModel):
    key: str
    removed_at: int


class CartOut(BaseModel):
    items: list[CartLine]
    removed_lines: list[Tombstone]
    version: int
    discounts: list[dict]
    currency: str
    last_client_id: Optional[str] = None
    updated_at: Optional[int] = None
    last_activity_at: Optional[int] = None
    recoverable: bool


class CartSyncResponse(BaseModel):
    ok: bool = True
    cart: CartOut


class CartHeartbeatRequest(StrictModel):
    user_id: Optional[str] = None
    site_id: Optional[str] = None


class CartHeartbeatResponse(BaseModel):
    ok: bool = True
    written_at: int


class CartValidateLineIn(StrictModel):
    product_id: str = Field(..., min_length=1, max_length=100)
    variant_id: Optional[str] = Field(None, max_length=100)
    qty: int = Field(1, ge=0)
    # The price the client is showing, compared against the catalog
    price: Optional[int] = Field(None, ge=0)


class CartValidateRequest(StrictModel):
    seller_user_id: str = Field(..., min_length=1)
    items: list[CartValidateLineIn] = Field(..., max_length=200)
    discounts: list[DiscountIn] = []


class ValidatedLine(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    qty: int
    price: int
    name: str
    category: Optional[str] = None
    available: int


class CartAdjustment(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    from_qty: Optional[int] = None
    to_qty: Optional[int] = None
    reason: str


class CartValidateResponse(BaseModel):
    ok: bool = True
    items: list[ValidatedLine]
    subtotal: int
    discounts: list[AppliedDiscount] = []
    discount_amount: int
    total: int
    changed: bool
    removed_item_ids: list[str] = []
    adjustments: list[CartAdjustment] = []
    rejected: list[RejectedDiscount] = []


# ============================================================================
# ESTIMATE SCHEMAS
# ============================================================================


class EstimateLineIn(StrictModel):
    amount: int = Field(..., ge=0)  # per unit, cents
    quantity: int = Field(1, ge=1)
    tax_code: Optional[str] = None


class ShippingAddress(StrictModel):
    country: Optional[str] = Field(None, min_length=2, max_length=2)
    region: Optional[str] = Field(None, max_length=3)
    postal_code: Optional[str] = None


class EstimateRequest(StrictModel):
    subtotal: int = Field(0, ge=0)
    discount_amount: int = Field(0, ge=0)
    currency: str = "USD"
    total_weight: int = Field(0, ge=0)  # grams
    tax_codes: list[str] = []
    line_items: Optional[list[EstimateLineIn]] = None
    shipping_address: Optional[ShippingAddress] = None


class TaxBucketOut(BaseModel):
    rate: float
    taxable: int
    tax: int


class EstimateResponse(BaseModel):
    ok: bool = True
    shipping: int
    tax: int
    tax_total: int
    tax_breakdown: dict[str, TaxBucketOut]
    currency: str


# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class OrderLineIn(StrictModel):
    product_id: str = Field(..., min_length=1, max_length=100)
    variant_id: Optional[str] = Field(None, max_length=100)
    qty: int = Field(..., ge=1)
    # Accepted from older clients; the catalog price is authoritative
    price: Optional[int] = Field(None, ge=0)


class CreateOrderRequest(StrictModel):
    user_id: Optional[str] = None
    seller_user_id: str = Field(..., min_length=1)
    site_id: Optional[str] = None
    items: list[OrderLineIn] = Field(..., min_length=1)
    discounts: list[DiscountIn] = []
    currency: str = Field("USD", min_length=3, max_length=3)


class StockAdjustment(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    from_qty: int
    to_qty: int
    reason: str


class CreateOrderResponse(BaseModel):
    ok: bool = True
    order_id: str
    lifecycle_status: LifecycleStatus
    status: str
    subtotal: int
    discount_amount: int
    total: int
    currency: str
    discounts: list[AppliedDiscount] = []
    rejected_discounts: list[RejectedDiscount] = []
    stock_adjustments: list[StockAdjustment] = []
    seller_user_id: str
    site_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    reused: bool = False


class OrderActionRequest(StrictModel):
    user_id: Optional[str] = None


class RefundRequest(StrictModel):
    user_id: Optional[str] = None
    amount: int = Field(..., gt=0)  # cents


class AdjustmentIn(StrictModel):
    type: str = Field(..., max_length=50)
    amount: int
    note: Optional[str] = Field(None, max_length=500)


class UpdateStatusRequest(StrictModel):
    user_id: Optional[str] = None
    lifecycle_status: Optional[LifecycleStatus] = None
    refund_amount: Optional[int] = Field(None, ge=0)
    adjustments: list[AdjustmentIn] = []
    note: Optional[str] = Field(None, max_length=500)


class OrderActionResponse(BaseModel):
    ok: bool = True
    order_id: str
    lifecycle_status: LifecycleStatus
    status: str
    already_fulfilled: Optional[bool] = None
    already_cancelled: Optional[bool] = None
    already_paid: Optional[bool] = None
    lines_applied: Optional[int] = None
    refund_id: Optional[str] = None
    refunded_amount: Optional[int] = None
    previous_lifecycle_status: Optional[LifecycleStatus] = None
    idempotency_key: Optional[str] = None
    reused: bool = False


# ============================================================================
# INTERNAL SCHEMAS
# ============================================================================


class ReapRequest(StrictModel):
    ttl_minutes: Optional[int] = Field(None, ge=1)
    limit: Optional[int] = Field(None, ge=1, le=500)


class ReapResponse(BaseModel):
    ok: bool = True
    processed: int
    cutoff: int
    expired_order_ids: list[str] = []
    failed_order_ids: list[str] = []


class MarkPaidRequest(StrictModel):
    payment_reference: str = Field(..., min_length=1, max_length=255)
    note: Optional[str] = Field(None, max_length=500)


# ============================================================================
# DISCOUNT CODE SCHEMAS
# ============================================================================


class DiscountCodeUpsert(StrictModel):
    # Admins manage codes on behalf of a seller; sellers manage their own
    seller_user_id: Optional[str] = None
    type: Literal["Percent", "Fixed"] = "Fixed"
    amount: float = Field(..., gt=0)
    stackable: bool = True
    min_spend: Optional[float] = Field(None, ge=0)
    non_stacking_group: Optional[str] = Field(None, max_length=50)
    exclude_products: list[str] = []
    exclude_categories: list[str] = []
    is_private: bool = False
    active: bool = True

    @model_validator(mode="after")
    def check_percent_range(self):
        if self.type == "Percent" and self.amount > 100:
            raise ValueError("Percent discounts cannot exceed 100")
        return self


class DiscountCodeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    seller_user_id: str
    type: str
    amount: float
    stackable: bool
    min_spend: Optional[float] = None
    non_stacking_group: Optional[str] = None
    exclude_products: list[str] = []
    exclude_categories: list[str] = []
    is_private: bool
    active: bool


class DiscountCodeResponse(BaseModel):
    ok: bool = True
    discount: DiscountCodeOut
    created: bool


class DiscountCodeListResponse(BaseModel):
    ok: bool = True
    discounts: list[DiscountCodeOut]
