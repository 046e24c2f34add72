"""
Operator channel notifications.

Payment screenshots and approve/reject prompts go to one Telegram channel.
Nothing here raises: a failed post is logged and reported as None/False.
"""

import html
import os
from decimal import Decimal

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError
from aiogram.types import BufferedInputFile
from pydantic import BaseModel

from storefront.bot.keyboards import get_review_keyboard
from storefront.logging import get_logger, order_ref
from storefront.services.money import format_kyat

logger = get_logger(__name__)

TELEGRAM_CHANNEL_ID = os.environ.get("TELEGRAM_CHANNEL_ID", "")

CAPTION_LIMIT = 1024


class PhotoReceipt(BaseModel):
    file_id: str
    message_id: int


class ApprovePrompt(BaseModel):
    order_id: str
    order_number: str
    user_name: str
    product_name: str
    amount: Decimal
    payment_method: str
    order_type: str = "product"


def build_screenshot_caption(
    order_number: str,
    user_name: str,
    product_name: str,
    amount: Decimal,
    payment_method: str,
    transaction_id: str | None = None,
) -> str:
    lines = [
        f"📦 <b>New Order: {html.escape(order_number)}</b>",
        f"👤 {html.escape(user_name or 'Unknown')}",
        f"🛒 {html.escape(product_name)}",
        f"💰 {format_kyat(amount)}",
        f"💳 {html.escape(payment_method.upper())}",
    ]
    if transaction_id:
        lines.append(f"🔖 TxID: <code>{html.escape(transaction_id)}</code>")
    return "\n".join(lines)[:CAPTION_LIMIT]


def build_prompt_text(prompt: ApprovePrompt) -> str:
    kind = "🔐 VPN" if prompt.order_type == "vpn" else "🛒 Product"
    return (
        f"🧾 <b>Review order {html.escape(prompt.order_number)}</b>\n"
        f"{kind}: {html.escape(prompt.product_name)}\n"
        f"👤 {html.escape(prompt.user_name or 'Unknown')}\n"
        f"💰 {format_kyat(prompt.amount)} via {html.escape(prompt.payment_method.upper())}"
    )


class NotificationDispatcher:
    """Posts to the operator channel through an aiogram Bot."""

    def __init__(self, bot: Bot | None, channel_id: str | int | None = TELEGRAM_CHANNEL_ID):
        self.bot = bot
        self.channel_id = channel_id

    @property
    def configured(self) -> bool:
        return self.bot is not None and bool(self.channel_id)

    async def send_screenshot(self, content: bytes, filename: str, caption: str) -> PhotoReceipt | None:
        if not self.configured:
            logger.warning("Telegram not configured - bot token or channel id missing")
            return None
        try:
            message = await self.bot.send_photo(
                chat_id=self.channel_id,
                photo=BufferedInputFile(content, filename=filename),
                caption=caption,
                parse_mode=ParseMode.HTML,
            )
        except TelegramAPIError as e:
            logger.error(f"Telegram sendPhoto failed: {e}")
            return None

        largest = message.photo[-1] if message.photo else None
        logger.info(f"Screenshot sent to Telegram (message {message.message_id})")
        return PhotoReceipt(
            file_id=largest.file_id if largest else "",
            message_id=message.message_id,
        )

    async def send_approve_buttons(self, prompt: ApprovePrompt) -> bool:
        if not self.configured:
            return False
        try:
            await self.bot.send_message(
                chat_id=self.channel_id,
                text=build_prompt_text(prompt),
                parse_mode=ParseMode.HTML,
                reply_markup=get_review_keyboard(prompt.order_id),
            )
        except TelegramAPIError as e:
            logger.error(f"Telegram approve prompt failed for {order_ref(prompt.order_id, prompt.order_number)}: {e}")
            return False
        return True
