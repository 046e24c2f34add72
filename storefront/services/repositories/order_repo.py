"""Order Repository - Order operations.

Status and provisioning writes are conditional updates: the filter carries the
value the caller read, and an empty result means another writer got there first.
"""
import uuid
from datetime import datetime, timedelta
from typing import Any

from storefront.logging import get_logger, sanitize_id_for_logging
from storefront.services.models import OPEN_STATUSES, VOID_STATUSES, Order

from .base import BaseRepository, iso, utc_now

logger = get_logger(__name__)

ORDER_NUMBER_PREFIX = "BD-"


def format_order_number(sequence: int) -> str:
    return f"{ORDER_NUMBER_PREFIX}{sequence:06d}"


class OrderRepository(BaseRepository):
    """Order database operations."""

    table = "orders"

    async def next_order_number(self) -> str:
        """Next sequential number after the highest existing one."""
        result = (
            await self.query()
            .select("orderNumber")
            .like("orderNumber", f"{ORDER_NUMBER_PREFIX}%")
            .order("orderNumber", desc=True)
            .limit(1)
            .execute()
        )
        last = 0
        if result.data:
            try:
                last = int(result.data[0]["orderNumber"][len(ORDER_NUMBER_PREFIX):])
            except (TypeError, ValueError):
                logger.warning(f"Unparseable order number: {result.data[0].get('orderNumber')}")
        return format_order_number(last + 1)

    async def create(self, data: dict[str, Any]) -> Order:
        """Insert a new order row. id/orderNumber/timestamps are filled in when absent."""
        now = iso()
        row = {
            "id": str(uuid.uuid4()),
            "createdAt": now,
            "updatedAt": now,
            **data,
        }
        if not row.get("orderNumber"):
            row["orderNumber"] = await self.next_order_number()
        result = await self.query().insert(row).execute()
        return Order(**result.data[0])

    async def get_by_id(self, order_id: str) -> Order | None:
        result = await self.query().select("*").eq("id", order_id).execute()
        return Order(**result.data[0]) if result.data else None

    async def update_fields(self, order_id: str, fields: dict[str, Any]) -> Order | None:
        """Unconditional field update."""
        result = (
            await self.query()
            .update({**fields, "updatedAt": iso()})
            .eq("id", order_id)
            .execute()
        )
        return Order(**result.data[0]) if result.data else None

    async def cas_status(
        self, order_id: str, expected_status: str, fields: dict[str, Any]
    ) -> Order | None:
        """Write `fields` only if the order is still in `expected_status`.

        Returns the updated order, or None when the status moved underneath us.
        """
        result = (
            await self.query()
            .update({**fields, "updatedAt": iso()})
            .eq("id", order_id)
            .eq("status", expected_status)
            .execute()
        )
        return Order(**result.data[0]) if result.data else None

    async def cas_provision_status(
        self, order_id: str, expected: str, fields: dict[str, Any]
    ) -> Order | None:
        """Write `fields` only if vpnProvisionStatus is still `expected`."""
        result = (
            await self.query()
            .update({**fields, "updatedAt": iso()})
            .eq("id", order_id)
            .eq("vpnProvisionStatus", expected)
            .execute()
        )
        return Order(**result.data[0]) if result.data else None

    async def list_orders(
        self,
        status: str | None = None,
        order_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        query = self.query().select("*")
        if status:
            query = query.eq("status", status)
        if order_type:
            query = query.eq("orderType", order_type)
        query = query.order("createdAt", desc=True).limit(limit)
        if offset > 0:
            query = query.range(offset, offset + limit - 1)
        result = await query.execute()
        return [Order(**o) for o in result.data]

    async def get_overdue(self, now: datetime | None = None) -> list[Order]:
        """Open orders whose payment window has passed."""
        result = (
            await self.query()
            .select("*")
            .in_("status", list(OPEN_STATUSES))
            .lt("paymentExpiresAt", iso(now))
            .execute()
        )
        return [Order(**o) for o in result.data]

    # ==================== FRAUD LOOKUPS ====================

    def _live(self, query):
        for status in VOID_STATUSES:
            query = query.neq("status", status)
        return query

    async def find_by_transaction_id(
        self, transaction_id: str, payment_method: str, lookback_days: int
    ) -> list[dict]:
        since = utc_now() - timedelta(days=lookback_days)
        query = (
            self.query()
            .select("id, orderNumber, status")
            .eq("transactionId", transaction_id)
            .eq("paymentMethod", payment_method)
            .gte("createdAt", iso(since))
        )
        result = await self._live(query).limit(1).execute()
        return result.data

    async def find_by_screenshot_hash(self, screenshot_hash: str) -> list[dict]:
        query = self.query().select("id, orderNumber, user").eq("screenshotHash", screenshot_hash)
        result = await self._live(query).limit(1).execute()
        return result.data

    async def find_recent_same_amount(
        self, user_id: str, total_amount: float, window_minutes: int
    ) -> list[dict]:
        since = utc_now() - timedelta(minutes=window_minutes)
        query = (
            self.query()
            .select("id, createdAt")
            .eq("user", user_id)
            .eq("totalAmount", total_amount)
            .gte("createdAt", iso(since))
        )
        result = await self._live(query).limit(1).execute()
        return result.data

    async def count_non_rejected_by_user(self, user_id: str) -> int:
        result = (
            await self.query()
            .select("id", count="exact")
            .eq("user", user_id)
            .neq("status", "rejected")
            .execute()
        )
        return result.count or 0

    # ==================== PROVISIONING CLAIM ====================

    async def claim_provision(
        self, order_id: str, seen_claimed_at: datetime | None
    ) -> str | None:
        """
        Take the provisioning claim if `vpnProvisionClaimedAt` is unchanged since it was read.

        Returns the claim timestamp written, or None when the claim was lost.
        """
        token = iso()
        query = self.query().update({"vpnProvisionClaimedAt": token}).eq("id", order_id)
        if seen_claimed_at is None:
            query = query.is_("vpnProvisionClaimedAt", "null")
        else:
            query = query.eq("vpnProvisionClaimedAt", iso(seen_claimed_at))
        result = await query.execute()
        if not result.data:
            logger.info(f"Provision claim lost for order {sanitize_id_for_logging(order_id)}")
            return None
        return token

    async def release_provision(self, order_id: str, token: str) -> bool:
        """Clear the claim only while it still holds `token`; a takeover keeps its own claim."""
        result = await (
            self.query()
            .update({"vpnProvisionClaimedAt": None})
            .eq("id", order_id)
            .eq("vpnProvisionClaimedAt", token)
            .execute()
        )
        return len(result.data) > 0
