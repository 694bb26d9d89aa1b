"""Unit tests for the store background worker."""

import pytest
from libs.db import config as db_config
from services.store_service.models import LifecycleStatus
from services.store_service.worker import WorkerSettings, task_reap_reservations
from tests.factories import OrderFactory, ProductFactory, minutes_ago, order_line


@pytest.mark.unit
def test_reaper_is_scheduled():
    assert task_reap_reservations in WorkerSettings.functions
    assert len(WorkerSettings.cron_jobs) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_task_reaps_with_configured_ttl(db_session, session_factory, monkeypatch):
    monkeypatch.setattr(db_config, "AsyncSessionLocal", session_factory)
    product = ProductFactory.create(stock=10, reserved=1)
    order = OrderFactory.create(items=[order_line(product, 1)], created_at=minutes_ago(31))
    db_session.add_all([product, order])
    await db_session.commit()

    result = await task_reap_reservations({})
    await db_session.refresh(order)

    assert result["processed"] == 1
    assert order.lifecycle_status == LifecycleStatus.EXPIRED
