"""Persistence for the request guards: idempotency records and rate-limit counters."""

from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.store_service.models.enums import IdempotencyStatus, enum_values
from sqlalchemy import BigInteger, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column


class IdempotencyRecord(Base):
    """Outcome of an operation keyed by the caller's Idempotency-Key."""

    __tablename__ = "store_idempotency_records"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    operation: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[IdempotencyStatus] = mapped_column(
        SAEnum(
            IdempotencyStatus,
            values_callable=enum_values,
            name="store_idempotency_status_enum",
        ),
        default=IdempotencyStatus.IN_PROGRESS,
    )
    response: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    error: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    failed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<IdempotencyRecord {self.key} status={self.status}>"


class RateLimitCounter(Base):
    """Fixed-window counter keyed by ``subject:action``."""

    __tablename__ = "store_rate_limit_counters"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, default=0)
    # Epoch milliseconds
    started_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    window_ms: Mapped[int] = mapped_column(Integer, nullable=False)

    def __repr__(self):
        return f"<RateLimitCounter {self.key} count={self.count}>"
