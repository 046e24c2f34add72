"""Stock Repository - product key records (`product_details` rows).

`sold` flips only through claim/release, both conditional on the current flag.
"""
from storefront.services.models import ProductDetail

from .base import BaseRepository, iso


class StockRepository(BaseRepository):
    """Product detail (key record) operations."""

    table = "product_details"

    async def get_unsold(self, product_id: str, limit: int | None = None) -> list[ProductDetail]:
        """Unsold keys for a product, oldest first."""
        query = (
            self.query()
            .select("*")
            .eq("productId", product_id)
            .eq("sold", False)
            .order("createdAt")
        )
        if limit:
            query = query.limit(limit)
        result = await query.execute()
        return [ProductDetail(**d) for d in result.data]

    async def count_unsold(self, product_id: str) -> int:
        result = (
            await self.query()
            .select("id", count="exact")
            .eq("productId", product_id)
            .eq("sold", False)
            .execute()
        )
        return result.count or 0

    async def claim(self, detail_id: str, sold_to: str) -> ProductDetail | None:
        """Mark one key as sold (atomic). None when someone else already took it."""
        result = (
            await self.query()
            .update({"sold": True, "soldTo": sold_to, "soldAt": iso()})
            .eq("id", detail_id)
            .eq("sold", False)
            .execute()
        )
        return ProductDetail(**result.data[0]) if result.data else None

    async def release(self, detail_ids: list[str]) -> int:
        """Return claimed keys to the unsold pool. Returns how many were released."""
        if not detail_ids:
            return 0
        result = (
            await self.query()
            .update({"sold": False, "soldTo": None, "soldAt": None})
            .in_("id", detail_ids)
            .eq("sold", True)
            .execute()
        )
        return len(result.data)
