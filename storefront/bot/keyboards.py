"""Telegram Inline Keyboards"""
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

APPROVE_PREFIX = "approve_order:"
REJECT_PREFIX = "reject_order:"


def get_review_keyboard(order_id: str) -> InlineKeyboardMarkup:
    """Approve / reject buttons under an operator-channel order post."""
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text="✅ Approve", callback_data=f"{APPROVE_PREFIX}{order_id}"),
            InlineKeyboardButton(text="❌ Reject", callback_data=f"{REJECT_PREFIX}{order_id}"),
        ]
    ])
