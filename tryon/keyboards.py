"""Inline keyboards of the chat surface."""

from __future__ import annotations

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from tryon import texts as msg

TRY_ON_CALLBACK = "tryon_go"
RESET_CALLBACK = "tryon_reset"


def try_on_keyboard() -> InlineKeyboardMarkup:
    """Keyboard shown once both photos are in place."""

    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text=msg.TRY_ON_BUTTON, callback_data=TRY_ON_CALLBACK)],
            [InlineKeyboardButton(text=msg.RESET_BUTTON, callback_data=RESET_CALLBACK)],
        ]
    )


__all__ = ["RESET_CALLBACK", "TRY_ON_CALLBACK", "try_on_keyboard"]
