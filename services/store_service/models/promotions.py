"""Store promotion models: seller-defined discount codes."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from sqlalchemy import Boolean, DateTime, Float, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class DiscountCode(Base):
    """A discount code a seller offers at checkout.

    ``amount`` is a percentage for ``Percent`` codes and an amount in currency
    units for ``Fixed`` ones; ``min_spend`` is in currency units too. Codes
    match case-insensitively.
    """

    __tablename__ = "store_discount_codes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    seller_user_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)

    type: Mapped[str] = mapped_column(String(20), default="Fixed", server_default="Fixed")
    amount: Mapped[float] = mapped_column(Float, nullable=False)

    stackable: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true")
    min_spend: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    non_stacking_group: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    exclude_products: Mapped[list] = mapped_column(JSONType, default=list)
    exclude_categories: Mapped[list] = mapped_column(JSONType, default=list)

    # Private codes are handed out directly instead of being advertised
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("seller_user_id", "code", name="uq_discount_code_per_seller"),
    )

    def __repr__(self):
        return f"<DiscountCode {self.code} seller={self.seller_user_id}>"
