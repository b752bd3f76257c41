"""Telegram bot front end and message rendering."""

from limits_bot.notifications.formatting import (
    escape_markdown_v2,
    format_analysis,
    format_error,
)
from limits_bot.notifications.telegram_bot import TelegramBotController, DialogueState

__all__ = [
    "escape_markdown_v2",
    "format_analysis",
    "format_error",
    "TelegramBotController",
    "DialogueState",
]
