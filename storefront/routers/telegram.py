"""
Telegram Webhook Router

Operator-channel callback updates (approve / reject buttons).
Always answers 200 so Telegram does not redeliver.
"""
import os

from aiogram.types import Update
from fastapi import APIRouter, BackgroundTasks, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from storefront.bot import get_bot, get_dispatcher
from storefront.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["telegram"])


async def _process_update(bot, dispatcher, update: Update) -> None:
    try:
        await dispatcher.feed_update(bot, update)
    except Exception as e:
        logger.error(f"Failed to process update {update.update_id}: {e}", exc_info=True)


@router.post("/api/telegram/webhook")
async def telegram_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    secret_token: str = Header(None, alias="X-Telegram-Bot-Api-Secret-Token"),
):
    """Handle Telegram webhook updates"""
    expected = os.environ.get("TELEGRAM_WEBHOOK_SECRET", "")
    if expected and secret_token != expected:
        raise HTTPException(status_code=401, detail="Invalid webhook secret")

    bot = get_bot()
    if not bot:
        logger.error("Bot instance is None - TELEGRAM_TOKEN may be missing")
        return JSONResponse(status_code=200, content={"ok": False, "error": "Bot not configured"})

    try:
        data = await request.json()
        update = Update.model_validate(data, context={"bot": bot})
    except Exception as e:
        logger.warning(f"Invalid Telegram update: {e}")
        return JSONResponse(status_code=200, content={"ok": False, "error": "Invalid update"})

    background_tasks.add_task(_process_update, bot, get_dispatcher(), update)
    return JSONResponse(content={"ok": True})
