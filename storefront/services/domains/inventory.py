"""Inventory Allocator - hands out product keys and keeps `stock` derived."""

from storefront.errors import InsufficientStock
from storefront.logging import get_logger, sanitize_id_for_logging
from storefront.services.models import ProductDetail
from storefront.services.repositories import ProductRepository, StockRepository

logger = get_logger(__name__)


class InventoryAllocator:
    """Claims unsold keys one row at a time; never shares a key between orders."""

    def __init__(self, stock: StockRepository, products: ProductRepository):
        self.stock = stock
        self.products = products

    async def available(self, product_id: str) -> int:
        return await self.stock.count_unsold(product_id)

    async def recompute_stock(self, product_id: str) -> int:
        count = await self.stock.count_unsold(product_id)
        await self.products.set_stock(product_id, count)
        return count

    async def allocate(self, product_id: str, quantity: int, user_id: str) -> list[ProductDetail]:
        """
        Mark `quantity` of the oldest unsold keys as sold to `user_id`.

        Rows lost to a concurrent claim are skipped and the next candidates are
        tried. When the pool runs dry before `quantity` is reached, everything
        claimed here is released and InsufficientStock is raised.
        """
        claimed: list[ProductDetail] = []
        tried: set[str] = set()

        while len(claimed) < quantity:
            candidates = [
                d for d in await self.stock.get_unsold(product_id)
                if d.id not in tried
            ]
            if not candidates:
                break
            for candidate in candidates:
                tried.add(candidate.id)
                detail = await self.stock.claim(candidate.id, user_id)
                if detail:
                    claimed.append(detail)
                    if len(claimed) == quantity:
                        break

        if len(claimed) < quantity:
            if claimed:
                await self.stock.release([d.id for d in claimed])
            available = await self.recompute_stock(product_id)
            logger.warning(
                f"Insufficient stock for product {sanitize_id_for_logging(product_id)}: "
                f"wanted {quantity}, available {available}"
            )
            raise InsufficientStock(available=available)

        await self.recompute_stock(product_id)
        logger.info(f"Allocated {quantity} key(s) of product {sanitize_id_for_logging(product_id)}")
        return claimed

    async def release(self, product_id: str, detail_ids: list[str]) -> None:
        """Undo a claim made inside a transition that then lost its status race."""
        released = await self.stock.release(detail_ids)
        await self.recompute_stock(product_id)
        logger.info(f"Released {released} key(s) of product {sanitize_id_for_logging(product_id)}")
