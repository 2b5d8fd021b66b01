# src/xramp/adapters/telegram/bot.py
"""
Telegram Bot - Application Builder

Files that USE this module:
- xramp.app (build_application for polling and for the notification bot)
"""

from __future__ import annotations

from telegram.ext import Application


def build_application(bot_token: str) -> Application:
    """
    Build the Telegram bot application.

    Args:
        bot_token: Telegram bot token

    Returns:
        Application instance (handlers are registered by the caller)
    """
    return Application.builder().token(bot_token).build()
