"""
Supabase Database Service

Holds the async Supabase client, the repositories and the domain services built
on them (fraud engine, coupon ledger, inventory allocator).

Usage:
    from storefront.services.database import get_database

    # At FastAPI startup (lifespan):
    await init_database()

    db = get_database()
    order = await db.orders.get_by_id(order_id)
"""

import asyncio
import os
from typing import Optional

from supabase._async.client import AsyncClient
from supabase._async.client import create_client as acreate_client

from storefront.logging import get_logger
from storefront.services.domains import CouponLedger, FraudDetectionEngine, InventoryAllocator
from storefront.services.repositories import (
    CouponRepository,
    OrderRepository,
    ProductRepository,
    SettingsRepository,
    StockRepository,
    UserRepository,
    VpnServerRepository,
)

logger = get_logger(__name__)


class Database:
    """
    Supabase database client with repositories and domains.

    Must be initialized via async factory method `create()` or `init_database()`;
    tests construct it directly around a fake client.
    """

    def __init__(self, client: AsyncClient):
        self.client = client

        self.orders = OrderRepository(client)
        self.products = ProductRepository(client)
        self.stock = StockRepository(client)
        self.coupons = CouponRepository(client)
        self.users = UserRepository(client)
        self.vpn_servers = VpnServerRepository(client)
        self.settings = SettingsRepository(client)

        # Domains
        self.fraud = FraudDetectionEngine(self.orders)
        self.coupon_ledger = CouponLedger(self.coupons)
        self.inventory = InventoryAllocator(self.stock, self.products)

    @classmethod
    async def create(cls) -> "Database":
        """Async factory method: creates the async Supabase client."""
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

        client = await acreate_client(url, key)
        return cls(client)


_db: Database | None = None
_db_lock: Optional["asyncio.Lock"] = None


def _get_lock() -> asyncio.Lock:
    global _db_lock
    if _db_lock is None:
        _db_lock = asyncio.Lock()
    return _db_lock


async def init_database() -> Database:
    """Initialize async database singleton (FastAPI lifespan or lazily)."""
    global _db
    if _db is not None:
        return _db

    async with _get_lock():
        if _db is None:
            logger.info("Initializing async Supabase client...")
            _db = await Database.create()
            logger.info("Async Supabase client initialized successfully")
    return _db


async def close_database() -> None:
    """Drop the singleton. Called at FastAPI shutdown."""
    global _db
    if _db is not None:
        try:
            await _db.client.auth.sign_out()
        except Exception as e:
            logger.warning(f"Error closing Supabase client: {e}")
        _db = None
        logger.info("Supabase client closed")


def get_database() -> Database:
    """
    Get database instance (sync accessor).

    Raises:
        RuntimeError: If database not initialized
    """
    if _db is None:
        raise RuntimeError(
            "Database not initialized. Call 'await init_database()' at startup."
        )
    return _db
