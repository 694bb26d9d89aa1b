"""
Payment gateway client used for refunds.

Orders record the gateway's charge reference (a Stripe PaymentIntent id) when
they are paid; refunds are issued against it.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RefundResult:
    """Result of creating a refund."""

    refund_id: str
    status: str  # pending, succeeded, failed
    amount: int  # in cents


class PaymentGatewayError(Exception):
    """Base exception for payment gateway errors."""

    def __init__(
        self, message: str, status_code: Optional[int] = None, response_data: Optional[dict] = None
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


class PaymentGateway(Protocol):
    async def refund(
        self,
        payment_reference: str,
        amount_cents: int,
        idempotency_key: Optional[str] = None,
    ) -> RefundResult: ...


class StripeGateway:
    """Async client for the Stripe Refunds API."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.base_url = (base_url or settings.STRIPE_API_BASE).rstrip("/")
        self._transport = transport
        self._headers = {"Authorization": f"Bearer {self.secret_key}"}

    async def _request(
        self,
        method: str,
        endpoint: str,
        form: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict:
        """Make an async request to the Stripe API (form-encoded, as Stripe expects)."""
        if not self.secret_key:
            raise PaymentGatewayError("STRIPE_SECRET_KEY is not configured")
        url = f"{self.base_url}{endpoint}"
        headers = dict(self._headers)
        if idempotency_key:
            # Stripe replays the first result for a repeated key
            headers["Idempotency-Key"] = idempotency_key

        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.request(
                    method=method, url=url, headers=headers, data=form
                )
        except httpx.HTTPError as exc:
            logger.error("Stripe request failed: %s", exc)
            raise PaymentGatewayError(f"Stripe unreachable: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            logger.error("Stripe returned a non-JSON response: %s", response.status_code)
            raise PaymentGatewayError(
                f"Invalid response from Stripe (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from exc
        if not response.is_success:
            error = data.get("error", {}) if isinstance(data, dict) else {}
            logger.error("Stripe API error: %s - %s", response.status_code, error)
            raise PaymentGatewayError(
                message=error.get("message", "Unknown Stripe error"),
                status_code=response.status_code,
                response_data=data,
            )
        return data

    async def refund(
        self,
        payment_reference: str,
        amount_cents: int,
        idempotency_key: Optional[str] = None,
    ) -> RefundResult:
        """
        Refund part or all of a charge.

        Args:
            payment_reference: PaymentIntent id recorded on the order
            amount_cents: Amount to refund in cents
            idempotency_key: Forwarded to Stripe so a retried request cannot
                refund twice

        Returns:
            RefundResult with the Stripe refund id
        """
        data = await self._request(
            "POST",
            "/v1/refunds",
            form={"payment_intent": payment_reference, "amount": amount_cents},
            idempotency_key=idempotency_key,
        )
        logger.info("Created refund %s for %s (%d)", data["id"], payment_reference, amount_cents)
        return RefundResult(
            refund_id=data["id"],
            status=data.get("status", "pending"),
            amount=data.get("amount", amount_cents),
        )


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency returning the configured gateway."""
    return StripeGateway()
