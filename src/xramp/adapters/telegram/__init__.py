# src/xramp/adapters/telegram/__init__.py
"""
Telegram Adapters - Operator Interface

This package contains Telegram bot adapters:
- Bot application builder
- Admin command handlers
"""

from xramp.adapters.telegram.bot import build_application
from xramp.adapters.telegram.handlers import build_handlers

__all__ = [
    "build_application",
    "build_handlers",
]
