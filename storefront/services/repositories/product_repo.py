"""Product Repository - Product catalog operations."""
from storefront.services.models import Product

from .base import BaseRepository, iso


class ProductRepository(BaseRepository):
    """Product database operations."""

    table = "products"

    async def get_by_id(self, product_id: str) -> Product | None:
        result = await self.query().select("*").eq("id", product_id).execute()
        return Product(**result.data[0]) if result.data else None

    async def set_stock(self, product_id: str, stock: int) -> None:
        """Persist the derived stock counter."""
        await (
            self.query()
            .update({"stock": stock, "updatedAt": iso()})
            .eq("id", product_id)
            .execute()
        )
