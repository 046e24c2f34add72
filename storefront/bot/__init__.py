# Telegram operator bot
import os
from typing import Optional

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

TELEGRAM_TOKEN = os.environ.get("TELEGRAM_TOKEN", "")

_bot: Optional[Bot] = None
_dp: Optional[Dispatcher] = None


def get_bot() -> Optional[Bot]:
    """Get or create bot instance (None without TELEGRAM_TOKEN)"""
    global _bot
    if _bot is None and TELEGRAM_TOKEN:
        _bot = Bot(
            token=TELEGRAM_TOKEN,
            default=DefaultBotProperties(parse_mode=ParseMode.HTML)
        )
    return _bot


def get_dispatcher() -> Dispatcher:
    """Get or create dispatcher instance"""
    global _dp
    if _dp is None:
        from storefront.bot.handlers import router

        _dp = Dispatcher()
        _dp.include_router(router)
    return _dp


async def close_bot() -> None:
    global _bot
    if _bot is not None:
        await _bot.session.close()
        _bot = None


__all__ = ["get_bot", "get_dispatcher", "close_bot"]
