"""Unit tests for the Stripe refund client."""

from urllib.parse import parse_qs

import httpx
import pytest
from services.store_service.services.payments import PaymentGatewayError, StripeGateway


def _gateway(handler, secret_key="sk_test_123"):
    return StripeGateway(
        secret_key=secret_key,
        base_url="https://stripe.test/",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_posts_form_to_stripe():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"id": "re_1", "status": "succeeded", "amount": 500})

    result = await _gateway(handler).refund("pi_123", 500)

    assert seen["url"] == "https://stripe.test/v1/refunds"
    assert seen["auth"] == "Bearer sk_test_123"
    assert seen["form"] == {"payment_intent": ["pi_123"], "amount": ["500"]}
    assert (result.refund_id, result.status, result.amount) == ("re_1", "succeeded", 500)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stripe_error_is_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "Charge already refunded"}})

    with pytest.raises(PaymentGatewayError) as exc_info:
        await _gateway(handler).refund("pi_123", 500)

    assert exc_info.value.message == "Charge already refunded"
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
@pytest.mark.unit
async def test_missing_secret_key_fails_before_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    gateway = _gateway(handler, secret_key=None)
    gateway.secret_key = None

    with pytest.raises(PaymentGatewayError):
        await gateway.refund("pi_123", 500)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_non_json_reply_is_wrapped_with_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    with pytest.raises(PaymentGatewayError) as exc_info:
        await _gateway(handler).refund("pi_123", 500)

    assert exc_info.value.status_code == 502
    assert "HTTP 502" in exc_info.value.message


@pytest.mark.asyncio
@pytest.mark.unit
async def test_idempotency_key_is_sent_as_header():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["key"] = request.headers.get("Idempotency-Key")
        return httpx.Response(200, json={"id": "re_1", "status": "succeeded", "amount": 500})

    await _gateway(handler).refund("pi_123", 500, idempotency_key="seller-1:refund:k1")

    assert seen["key"] == "seller-1:refund:k1"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_no_idempotency_header_without_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["has_key"] = "Idempotency-Key" in request.headers
        return httpx.Response(200, json={"id": "re_1", "status": "succeeded", "amount": 500})

    await _gateway(handler).refund("pi_123", 500)

    assert seen["has_key"] is False
