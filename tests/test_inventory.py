"""
Tests for the inventory allocator
"""
import asyncio

import pytest

from storefront.errors import InsufficientStock


class TestAllocate:
    @pytest.mark.asyncio
    async def test_oldest_keys_first_and_stock_recomputed(self, db, seed, fake_client):
        seed.product("prod-1", stock=3)

        keys = await db.inventory.allocate("prod-1", 2, "user-1")

        assert [k.id for k in keys] == ["prod-1-key-0", "prod-1-key-1"]
        assert all(k.sold and k.sold_to == "user-1" for k in keys)
        assert fake_client.row("products", "prod-1")["stock"] == 1

    @pytest.mark.asyncio
    async def test_short_pool_rolls_back(self, db, seed, fake_client):
        seed.product("prod-1", stock=2)

        with pytest.raises(InsufficientStock) as exc:
            await db.inventory.allocate("prod-1", 3, "user-1")

        assert exc.value.available == 2
        assert not any(d["sold"] for d in fake_client.rows("product_details"))
        assert fake_client.row("products", "prod-1")["stock"] == 2

    @pytest.mark.asyncio
    async def test_concurrent_last_unit_never_shared(self, db, seed, fake_client):
        seed.product("prod-1", stock=1)

        results = await asyncio.gather(
            db.inventory.allocate("prod-1", 1, "user-a"),
            db.inventory.allocate("prod-1", 1, "user-b"),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1 and isinstance(losers[0], InsufficientStock)
        assert fake_client.row("products", "prod-1")["stock"] == 0

    @pytest.mark.asyncio
    async def test_concurrent_allocations_get_distinct_keys(self, db, seed):
        seed.product("prod-1", stock=4)

        first, second = await asyncio.gather(
            db.inventory.allocate("prod-1", 2, "user-a"),
            db.inventory.allocate("prod-1", 2, "user-b"),
        )

        ids = [k.id for k in first + second]
        assert len(ids) == len(set(ids)) == 4


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_returns_keys(self, db, seed, fake_client):
        seed.product("prod-1", stock=2)
        keys = await db.inventory.allocate("prod-1", 2, "user-1")

        await db.inventory.release("prod-1", [k.id for k in keys])

        assert await db.inventory.available("prod-1") == 2
        assert fake_client.row("products", "prod-1")["stock"] == 2
        assert all(d["soldTo"] is None for d in fake_client.rows("product_details"))
