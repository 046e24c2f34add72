"""
Admin API Router

Admin-only endpoints. Combines all sub-routers into a single router with tag "admin".
"""
from fastapi import APIRouter

from .orders import router as orders_router
from .screenshots import router as screenshots_router

router = APIRouter(tags=["admin"])
router.include_router(orders_router)
router.include_router(screenshots_router)

__all__ = ["router"]
