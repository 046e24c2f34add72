"""Pytest configuration and fixtures"""
import asyncio
import copy
import os
import re
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

# Set test environment variables
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test_key")
os.environ.setdefault("CRON_SECRET", "test_cron_secret")
os.environ.setdefault("VERCEL", "1")

from storefront.config import PipelineSettings  # noqa: E402
from storefront.orders.pipeline import OrderPipeline, Screenshot  # noqa: E402
from storefront.orders.vpn import VpnProvisioner  # noqa: E402
from storefront.services.database import Database  # noqa: E402
from storefront.services.integrations.ocr import OcrResult  # noqa: E402
from storefront.services.integrations.xui import VpnCredential  # noqa: E402
from storefront.services.quarantine import QuarantineStore  # noqa: E402


# ==================== FAKE SUPABASE ====================

class _Result:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


def _like(pattern: str) -> re.Pattern:
    return re.compile("^" + ".*".join(re.escape(part) for part in pattern.split("%")) + "$")


class _FakeQuery:
    """In-memory stand-in for the async PostgREST query builder.

    Every execute() yields to the loop first, so concurrent coroutines
    interleave between their read and their conditional write.
    """

    def __init__(self, store: "FakeSupabase", table: str):
        self.store = store
        self.table = table
        self._mode = "select"
        self._payload: Any = None
        self._count: Optional[str] = None
        self._filters: List = []
        self._order: Optional[tuple] = None
        self._limit: Optional[int] = None
        self._range: Optional[tuple] = None

    # ---- verbs ----

    def select(self, *_columns, count=None):
        self._mode = "select"
        self._count = count
        return self

    def insert(self, row):
        self._mode = "insert"
        self._payload = row
        return self

    def update(self, data: Dict[str, Any]):
        self._mode = "update"
        self._payload = data
        return self

    # ---- filters ----

    def _filter(self, fn):
        self._filters.append(fn)
        return self

    def eq(self, column, value):
        return self._filter(lambda r: r.get(column) == value)

    def neq(self, column, value):
        return self._filter(lambda r: r.get(column) is not None and r.get(column) != value)

    def in_(self, column, values):
        values = list(values)
        return self._filter(lambda r: r.get(column) in values)

    def is_(self, column, value):
        if value == "null":
            return self._filter(lambda r: r.get(column) is None)
        return self._filter(lambda r: r.get(column) is value)

    def _compare(self, column, value, op):
        return self._filter(lambda r: r.get(column) is not None and op(r.get(column), value))

    def lt(self, column, value):
        return self._compare(column, value, lambda a, b: a < b)

    def lte(self, column, value):
        return self._compare(column, value, lambda a, b: a <= b)

    def gt(self, column, value):
        return self._compare(column, value, lambda a, b: a > b)

    def gte(self, column, value):
        return self._compare(column, value, lambda a, b: a >= b)

    def like(self, column, pattern):
        regex = _like(pattern)
        return self._filter(lambda r: isinstance(r.get(column), str) and bool(regex.match(r[column])))

    # ---- modifiers ----

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, n):
        self._limit = n
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    # ---- execution ----

    def _matching(self) -> List[Dict[str, Any]]:
        rows = self.store.tables.setdefault(self.table, [])
        return [r for r in rows if all(f(r) for f in self._filters)]

    async def execute(self) -> _Result:
        await asyncio.sleep(0)
        if self.store.fail_tables.get(self.table):
            raise RuntimeError(f"{self.table} unavailable")
        self.store.calls.append((self.table, self._mode))

        if self._mode == "insert":
            rows = self._payload if isinstance(self._payload, list) else [self._payload]
            stored = [copy.deepcopy(r) for r in rows]
            self.store.tables.setdefault(self.table, []).extend(stored)
            return _Result(copy.deepcopy(stored))

        matched = self._matching()

        if self._mode == "update":
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return _Result(copy.deepcopy(matched))

        if self._order:
            column, desc = self._order
            present = [r for r in matched if r.get(column) is not None]
            missing = [r for r in matched if r.get(column) is None]
            matched = sorted(present, key=lambda r: r[column], reverse=desc) + missing
        count = len(matched) if self._count else None
        if self._range:
            matched = matched[self._range[0]:self._range[1] + 1]
        if self._limit is not None:
            matched = matched[:self._limit]
        return _Result(copy.deepcopy(matched), count=count)


class FakeSupabase:
    """Async Supabase client double: `client.table(name)` over in-memory rows."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.fail_tables: Dict[str, bool] = {}
        self.calls: List[tuple] = []

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self, name)

    def rows(self, name: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(name, [])

    def row(self, name: str, row_id: str) -> Optional[Dict[str, Any]]:
        return next((r for r in self.rows(name) if r.get("id") == row_id), None)

    def writes(self, name: str) -> int:
        return sum(1 for table, mode in self.calls if table == name and mode in ("insert", "update"))


# ==================== SEED HELPERS ====================

def _iso(value: datetime) -> str:
    return value.isoformat()


class Seeder:
    def __init__(self, client: FakeSupabase):
        self.client = client

    def user(self, user_id: str = "user-1", name: str = "Aung Aung", email: str | None = "aung@example.com"):
        self.client.rows("users").append({"id": user_id, "name": name, "email": email})
        return user_id

    def product(
        self,
        product_id: str = "prod-1",
        price: float = 25000,
        stock: int = 5,
        category: str = "streaming",
        name: str = "Netflix Premium",
        active: bool = True,
    ) -> str:
        self.client.rows("products").append({
            "id": product_id,
            "name": name,
            "category": category,
            "price": price,
            "stock": stock,
            "active": active,
        })
        base = datetime(2026, 1, 1, tzinfo=UTC)
        for i in range(stock):
            self.client.rows("product_details").append({
                "id": f"{product_id}-key-{i}",
                "productId": product_id,
                "serialKey": f"{product_id.upper()}-SERIAL-{i}",
                "sold": False,
                "soldTo": None,
                "soldAt": None,
                "createdAt": _iso(base + timedelta(minutes=i)),
            })
        return product_id

    def coupon(
        self,
        code: str = "SAVE20",
        discount_type: str = "percentage",
        discount_value: float = 20,
        usage_limit: int = 0,
        used_count: int = 0,
        per_user_limit: int = 1,
        min_order_amount: float = 0,
        max_discount_amount: float | None = None,
        categories: list | None = None,
        valid_from: datetime | None = None,
        valid_until: datetime | None = None,
    ) -> str:
        now = datetime.now(UTC)
        coupon_id = f"coupon-{code.lower()}"
        self.client.rows("coupons").append({
            "id": coupon_id,
            "code": code,
            "discountType": discount_type,
            "discountValue": discount_value,
            "minOrderAmount": min_order_amount,
            "maxDiscountAmount": max_discount_amount,
            "usageLimit": usage_limit,
            "usedCount": used_count,
            "perUserLimit": per_user_limit,
            "usedBy": [],
            "validFrom": _iso(valid_from or now - timedelta(days=1)),
            "validUntil": _iso(valid_until or now + timedelta(days=30)),
            "categories": categories or [],
            "active": True,
        })
        return coupon_id

    def server(self, server_id: str = "sg1", online: bool = True, protocols: list | None = None) -> str:
        self.client.rows("vpn_servers").append({
            "id": server_id,
            "name": "Singapore 1",
            "flag": "🇸🇬",
            "url": "https://sg1.example.net:2053",
            "panelPath": "/panel",
            "domain": "sg1.example.net",
            "subPort": 2096,
            "trojanPort": 443,
            "protocol": "trojan",
            "enabledProtocols": protocols or ["trojan", "vless"],
            "online": online,
            "enabled": True,
        })
        return server_id

    def order(self, **fields) -> Dict[str, Any]:
        now = datetime.now(UTC)
        row = {
            "id": str(uuid.uuid4()),
            "orderNumber": fields.pop("orderNumber", None),
            "user": "user-1",
            "orderType": "product",
            "product": "prod-1",
            "quantity": 1,
            "totalAmount": 25000.0,
            "paymentMethod": "kpay",
            "discountAmount": 0.0,
            "paymentScreenshot": "/uploads/payments/pay-seed.jpg",
            "screenshotHash": uuid.uuid4().hex,
            "transactionId": "",
            "fraudFlags": [],
            "requiresManualReview": False,
            "deliveredKeys": [],
            "status": "verifying",
            "paymentExpiresAt": _iso(now + timedelta(minutes=30)),
            "createdAt": _iso(now),
            "updatedAt": _iso(now),
        }
        row.update(fields)
        self.client.rows("orders").append(row)
        return row


# ==================== FIXTURES ====================

@pytest.fixture
def fake_client():
    return FakeSupabase()


@pytest.fixture
def seed(fake_client):
    return Seeder(fake_client)


@pytest.fixture
def db(fake_client):
    return Database(fake_client)


@pytest.fixture
def quarantine(tmp_path):
    return QuarantineStore(tmp_path / "quarantine", tmp_path / "public")


@pytest.fixture
def settings():
    return PipelineSettings()


@pytest.fixture
def mock_ocr():
    """OCR adapter that reads nothing useful unless a test says otherwise."""
    ocr = AsyncMock()
    ocr.extract = AsyncMock(return_value=OcrResult(confidence=0))
    return ocr


@pytest.fixture
def mock_notifier():
    notifier = AsyncMock()
    notifier.send_screenshot = AsyncMock(return_value=None)
    notifier.send_approve_buttons = AsyncMock(return_value=True)
    return notifier


def make_credential(email: str = "aung-1d-tr-abc123") -> VpnCredential:
    return VpnCredential(
        client_email=email,
        client_uuid="6f1c2b7e-0000-4000-8000-000000000001",
        sub_id="abcdefghijklmnop",
        sub_link="https://sg1.example.net:2096/sub/abcdefghijklmnop",
        config_link="trojan://6f1c2b7e@sg1.example.net:443?security=tls#SG1",
        protocol="trojan",
        expiry_time=1893456000000,
        devices=1,
    )


@pytest.fixture
def mock_panel():
    panel = AsyncMock()
    panel.provision = AsyncMock(return_value=make_credential())
    panel.revoke = AsyncMock(return_value=True)
    return panel


@pytest.fixture
def provisioner(db, mock_panel):
    return VpnProvisioner(db, mock_panel)


@pytest.fixture
def pipeline(db, quarantine, mock_ocr, mock_notifier, provisioner, settings):
    return OrderPipeline(
        db=db,
        quarantine=quarantine,
        ocr=mock_ocr,
        notifier=mock_notifier,
        provisioner=provisioner,
        base_settings=settings,
    )


@pytest.fixture
def screenshot():
    return Screenshot(content=b"\x89PNG fake receipt bytes", filename="receipt.png")
