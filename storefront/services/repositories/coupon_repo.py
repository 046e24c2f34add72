"""Coupon Repository - coupon lookup and the usage compare-and-swap."""
from typing import Any

from storefront.services.models import Coupon

from .base import BaseRepository, iso


class CouponRepository(BaseRepository):
    """Coupon database operations."""

    table = "coupons"

    async def get_by_code(self, code: str) -> Coupon | None:
        """Active coupon by code (codes are stored upper-case)."""
        result = (
            await self.query()
            .select("*")
            .eq("code", code.strip().upper())
            .eq("active", True)
            .execute()
        )
        return Coupon(**result.data[0]) if result.data else None

    async def get_by_id(self, coupon_id: str) -> Coupon | None:
        result = await self.query().select("*").eq("id", coupon_id).execute()
        return Coupon(**result.data[0]) if result.data else None

    async def cas_record_usage(
        self, coupon: Coupon, usage: dict[str, Any]
    ) -> bool:
        """Increment usedCount and append `usage` iff usedCount is still what we read."""
        used_by = [u.model_dump(by_alias=True, mode="json") for u in coupon.used_by]
        used_by.append(usage)
        result = (
            await self.query()
            .update({
                "usedCount": coupon.used_count + 1,
                "usedBy": used_by,
                "updatedAt": iso(),
            })
            .eq("id", coupon.id)
            .eq("usedCount", coupon.used_count)
            .execute()
        )
        return len(result.data) > 0
