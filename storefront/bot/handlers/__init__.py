"""Bot handlers package - exports combined router with all handlers."""
from aiogram import Router

from storefront.bot.handlers.callbacks import router as callbacks_router

router = Router()
router.include_router(callbacks_router)

__all__ = ["router"]
