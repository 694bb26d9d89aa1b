"""Integration tests for the cart endpoints."""

import pytest
from tests.factories import DiscountCodeFactory, ProductFactory


def _sync_body(**overrides):
    body = {
        "user_id": "buyer-1",
        "client_id": "web",
        "items": [{"product_id": "p1", "qty": 2, "price": 500, "line_updated_at": 100}],
        "removed_keys": [],
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
@pytest.mark.integration
async def test_sync_merges_across_devices(store_client, buyer_headers):
    first = await store_client.post(
        "/store/cart/sync", json=_sync_body(), headers=buyer_headers
    )
    assert first.status_code == 200
    cart = first.json()["cart"]
    assert cart["version"] == 1
    assert cart["items"][0]["qty"] == 2
    assert cart["recoverable"] is True

    second = await store_client.post(
        "/store/cart/sync",
        json=_sync_body(client_id="phone", items=[], removed_keys=["p1::"]),
        headers=buyer_headers,
    )
    cart = second.json()["cart"]
    assert cart["version"] == 2
    assert cart["items"] == []
    assert cart["removed_lines"][0]["key"] == "p1::"
    assert cart["last_client_id"] == "phone"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_sync_requires_authentication(store_client):
    response = await store_client.post("/store/cart/sync", json=_sync_body())

    assert response.status_code == 401
    assert response.json()["ok"] is False
    assert response.json()["errorCode"] == "UNAUTHORIZED"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_sync_rejects_other_users_cart(store_client, buyer_headers):
    response = await store_client.post(
        "/store/cart/sync", json=_sync_body(user_id="buyer-2"), headers=buyer_headers
    )

    assert response.status_code == 403
    assert response.json()["errorCode"] == "FORBIDDEN"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_sync_validation_envelope(store_client, buyer_headers):
    body = _sync_body()
    del body["client_id"]

    response = await store_client.post("/store/cart/sync", json=body, headers=buyer_headers)

    assert response.status_code == 400
    data = response.json()
    assert data["errorCode"] == "VALIDATION"
    assert data["details"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_heartbeat_without_body(store_client, buyer_headers):
    response = await store_client.post("/store/cart/heartbeat", headers=buyer_headers)

    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert response.json()["written_at"] > 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_estimate_is_public(store_client):
    response = await store_client.post(
        "/store/cart/estimate",
        json={"subtotal": 2500, "discount_amount": 500, "total_weight": 800},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["shipping"] == 500
    assert data["tax"] == data["tax_total"] == 160
    assert data["tax_breakdown"]["default"]["taxable"] == 2000


@pytest.mark.asyncio
@pytest.mark.integration
async def test_estimate_with_line_items_and_address(store_client):
    response = await store_client.post(
        "/store/cart/estimate",
        json={
            "subtotal": 60000,
            "line_items": [{"amount": 1000, "quantity": 3, "tax_code": "digital"}],
            "shipping_address": {"country": "DE"},
        },
    )

    data = response.json()
    assert data["shipping"] == 0
    assert data["tax_breakdown"]["digital"]["rate"] == 0.2
    assert data["tax_total"] == 600


@pytest.mark.asyncio
@pytest.mark.integration
async def test_request_id_is_echoed(store_client):
    response = await store_client.get("/health", headers={"X-Request-ID": "req-42"})

    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-42"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_validate_reprices_and_applies_stored_codes(store_client, session_factory):
    product = ProductFactory.create(price=1200, stock=5, reserved=2)
    async with session_factory() as session:
        session.add_all([product, DiscountCodeFactory.create(code="SAVE10")])
        await session.commit()

    response = await store_client.post(
        "/store/cart/validate",
        json={
            "seller_user_id": "seller-1",
            "items": [{"product_id": str(product.id), "qty": 4, "price": 1000}],
            "discounts": [{"code": "save10"}, {"code": "ANYTHING"}],
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["items"][0]["qty"] == 3
    assert data["items"][0]["price"] == 1200
    assert data["subtotal"] == 3600
    assert data["discount_amount"] == 360
    assert data["total"] == 3240
    assert data["changed"] is True
    assert data["adjustments"] == [
        {
            "product_id": str(product.id),
            "variant_id": None,
            "from_qty": 4,
            "to_qty": 3,
            "reason": "stock_clamped",
        }
    ]
    assert data["rejected"] == [{"code": "ANYTHING", "reason": "not_found"}]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_validate_rejects_client_discount_amounts(store_client):
    response = await store_client.post(
        "/store/cart/validate",
        json={
            "seller_user_id": "seller-1",
            "items": [],
            "discounts": [{"code": "ANYTHING", "type": "Percent", "amount": 100}],
        },
    )

    assert response.status_code == 400
    assert response.json()["errorCode"] == "VALIDATION"
