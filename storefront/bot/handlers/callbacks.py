"""Callback query handlers for the operator-channel approve/reject buttons."""
import html
import os

from aiogram import F, Router
from aiogram.exceptions import TelegramAPIError
from aiogram.types import CallbackQuery

from storefront.bot.keyboards import APPROVE_PREFIX, REJECT_PREFIX
from storefront.errors import StorefrontError
from storefront.logging import get_logger, order_ref
from storefront.services.models import OrderStatus

logger = get_logger(__name__)

router = Router()

TELEGRAM_REJECT_REASON = "Rejected via Telegram"


def _admin_ids() -> set[int]:
    raw = os.environ.get("TELEGRAM_ADMIN_IDS", "")
    return {int(part) for part in raw.split(",") if part.strip().isdigit()}


def is_operator(telegram_id: int) -> bool:
    """Anyone in the channel may act unless TELEGRAM_ADMIN_IDS narrows it."""
    allowed = _admin_ids()
    return not allowed or telegram_id in allowed


async def _apply(callback: CallbackQuery, prefix: str, target: OrderStatus) -> None:
    from storefront.routers.deps import get_pipeline

    if not is_operator(callback.from_user.id):
        await callback.answer("Not allowed", show_alert=True)
        return

    order_id = callback.data[len(prefix):]
    admin_id = f"telegram:{callback.from_user.id}"
    pipeline = get_pipeline()

    try:
        result = await pipeline.admin_transition(
            order_id,
            target.value,
            admin_id,
            reject_reason=TELEGRAM_REJECT_REASON if target == OrderStatus.REJECTED else None,
        )
    except StorefrontError as e:
        logger.warning(f"Telegram {target.value} failed for {order_ref(order_id)}: {e.message}")
        await callback.answer(e.message[:200], show_alert=True)
        return

    order = result.order
    await callback.answer(result.message[:200])

    icon = "✅" if order.status == OrderStatus.COMPLETED else "❌"
    outcome = f"{icon} <b>{html.escape(order.status.value.upper())}</b> by {html.escape(callback.from_user.full_name)}"
    if callback.message:
        try:
            await callback.message.edit_text(
                f"{callback.message.html_text}\n\n{outcome}",
                reply_markup=None,
            )
        except TelegramAPIError as e:
            logger.warning(f"Failed to edit operator message for {order_ref(order.id, order.order_number)}: {e}")


@router.callback_query(F.data.startswith(APPROVE_PREFIX))
async def callback_approve_order(callback: CallbackQuery):
    """Approve button: complete the order (allocate keys / provision VPN)."""
    await _apply(callback, APPROVE_PREFIX, OrderStatus.COMPLETED)


@router.callback_query(F.data.startswith(REJECT_PREFIX))
async def callback_reject_order(callback: CallbackQuery):
    """Reject button: reject with a fixed reason."""
    await _apply(callback, REJECT_PREFIX, OrderStatus.REJECTED)
