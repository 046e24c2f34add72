"""
Tests for the payment-window expiry sweep
"""
from datetime import UTC, datetime, timedelta

import pytest

from storefront.orders.status_service import EXPIRED_ADMIN_NOTE, EXPIRED_REJECT_REASON


def _ago(minutes: int) -> str:
    return (datetime.now(UTC) - timedelta(minutes=minutes)).isoformat()


@pytest.mark.asyncio
async def test_overdue_pending_order_is_rejected(pipeline, seed, fake_client, quarantine):
    seed.product("prod-1", stock=3)
    row = seed.order(status="pending", paymentExpiresAt=_ago(40))
    await quarantine.save(b"receipt", row["paymentScreenshot"].lstrip("/"))

    expired = await pipeline.sweep_expired()

    stored = fake_client.row("orders", row["id"])
    assert expired == 1
    assert stored["status"] == "rejected"
    assert stored["rejectReason"] == EXPIRED_REJECT_REASON
    assert stored["adminNote"] == EXPIRED_ADMIN_NOTE
    assert fake_client.writes("product_details") == 0
    assert fake_client.row("products", "prod-1")["stock"] == 3
    assert quarantine.is_quarantined(row["paymentScreenshot"])


@pytest.mark.asyncio
async def test_only_open_overdue_orders(pipeline, seed, fake_client):
    overdue_verifying = seed.order(status="verifying", paymentExpiresAt=_ago(1))
    still_open = seed.order(status="pending", paymentExpiresAt=_ago(-10))
    completed = seed.order(status="completed", paymentExpiresAt=_ago(60))

    expired = await pipeline.sweep_expired()

    assert expired == 1
    assert fake_client.row("orders", overdue_verifying["id"])["status"] == "rejected"
    assert fake_client.row("orders", still_open["id"])["status"] == "pending"
    assert fake_client.row("orders", completed["id"])["status"] == "completed"


@pytest.mark.asyncio
async def test_sweep_is_idempotent(pipeline, seed):
    seed.order(status="pending", paymentExpiresAt=_ago(40))

    assert await pipeline.sweep_expired() == 1
    assert await pipeline.sweep_expired() == 0


@pytest.mark.asyncio
async def test_sweep_can_be_disabled(pipeline, seed, fake_client, settings):
    row = seed.order(status="pending", paymentExpiresAt=_ago(40))
    off = settings.model_copy(update={"auto_expire_enabled": False})

    assert await pipeline.sweep_expired(off) == 0
    assert fake_client.row("orders", row["id"])["status"] == "pending"


@pytest.mark.asyncio
async def test_sweep_never_raises(pipeline, fake_client):
    fake_client.fail_tables["orders"] = True

    assert await pipeline.sweep_expired() == 0
