"""Shared handler helpers: auth guard, runtime lookup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .. import config
from ..background import AlertRuntime, get_runtime

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from telegram import Update
    from telegram.ext import ContextTypes


def allowed(update: "Update") -> bool:
    """Check if the update sender is authorized to use the bot.

    Args:
        update: Telegram Update object containing chat information

    Returns:
        True if the chat ID is in the ALLOWED list, False otherwise.

    Note:
        Returns False if ALLOWED_CHAT_IDS is empty or update has no chat.
    """
    if not config.ALLOWED:
        return False
    if not update.effective_chat:
        return False
    return update.effective_chat.id in config.ALLOWED


async def guard(update: "Update", context: "ContextTypes.DEFAULT_TYPE") -> bool:
    """Guard function to check authorization before executing commands.

    Returns:
        True if authorized, False otherwise. Sends unauthorized message on failure.
    """
    if allowed(update):
        return True
    if update and update.effective_chat:
        await update.effective_chat.send_message("⛔ Not authorized")
    return False


def runtime_for(context) -> AlertRuntime:
    return get_runtime(context.application)
