"""Integration tests for the internal store endpoints."""

import pytest
from services.store_service.models import LifecycleStatus
from tests.factories import OrderFactory, ProductFactory, minutes_ago, order_line


async def _seed_order(session_factory, **overrides):
    product = ProductFactory.create(stock=10, reserved=2)
    order = OrderFactory.create(items=[order_line(product, 2)], **overrides)
    async with session_factory() as session:
        session.add_all([product, order])
        await session.commit()
    return order


@pytest.mark.asyncio
@pytest.mark.integration
async def test_reap_expires_stale_orders(store_client, session_factory, admin_headers):
    stale = await _seed_order(session_factory, created_at=minutes_ago(45))
    await _seed_order(session_factory)

    response = await store_client.post("/store/internal/reservations/reap", headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] == 1
    assert data["expired_order_ids"] == [str(stale.id)]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_reap_honours_ttl_override(store_client, session_factory, admin_headers):
    await _seed_order(session_factory, created_at=minutes_ago(45))

    response = await store_client.post(
        "/store/internal/reservations/reap",
        json={"ttl_minutes": 60},
        headers=admin_headers,
    )

    assert response.json()["processed"] == 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_internal_routes_require_admin(store_client, seller_headers):
    response = await store_client.post(
        "/store/internal/reservations/reap", headers=seller_headers
    )

    assert response.status_code == 403
    assert response.json()["errorCode"] == "FORBIDDEN"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_mark_paid(store_client, session_factory, admin_headers):
    order = await _seed_order(session_factory)
    url = f"/store/internal/orders/{order.id}/mark-paid"

    first = await store_client.post(url, json={"payment_reference": "pi_1"}, headers=admin_headers)
    second = await store_client.post(url, json={"payment_reference": "pi_1"}, headers=admin_headers)

    assert first.status_code == 200
    assert first.json()["lifecycle_status"] == "paid"
    assert first.json()["already_paid"] is False
    assert second.json()["already_paid"] is True


@pytest.mark.asyncio
@pytest.mark.integration
async def test_mark_paid_on_expired_order(store_client, session_factory, admin_headers):
    order = await _seed_order(session_factory, lifecycle_status=LifecycleStatus.EXPIRED)

    response = await store_client.post(
        f"/store/internal/orders/{order.id}/mark-paid",
        json={"payment_reference": "pi_1"},
        headers=admin_headers,
    )

    assert response.status_code == 409
    assert response.json()["errorCode"] == "CONFLICT"
