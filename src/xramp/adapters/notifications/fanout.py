# src/xramp/adapters/notifications/fanout.py
"""
Notification Fanout - Pushing Status Updates to Subscribers

Every accepted lifecycle transition publishes one event
{transaction_id, status, ...} keyed by the owning user. Delivery is
best-effort: the state machine logs and ignores publish failures.

Files that USE this module:
- xramp.application.state_machine (publish after each accepted transition)
- xramp.app (chooses Telegram or logging fanout)
- tests.test_notifications, tests.test_state_machine

Files that this module USES:
- xramp.adapters.formatting.formatter (format_status_update)
- python-telegram-bot (Bot.send_message)
"""
from __future__ import annotations  # Enable postponed evaluation of annotations

import asyncio  # Flood-control back-off and concurrent delivery
import logging  # Standard library for logging messages and errors
from typing import Any, Dict, List, Protocol  # Type hints and the fanout protocol

from telegram.error import RetryAfter, TelegramError  # Telegram API error exceptions

from xramp.adapters.formatting.formatter import format_status_update  # Status update message text

logger = logging.getLogger(__name__)


class NotificationFanout(Protocol):
    """Protocol for status update delivery."""

    async def publish(self, subscriber_key: str, event: Dict[str, Any]) -> None: ...


class LoggingFanout:
    """Default fanout: writes each event to the log."""

    async def publish(self, subscriber_key: str, event: Dict[str, Any]) -> None:
        logger.info("Notify user=%s tx=%s status=%s",
                    subscriber_key, event.get("transaction_id"), event.get("status"))


class TelegramFanout:
    """
    Sends status updates to a Telegram chat (operator channel).

    Rate limits are retried once after the requested delay; other Telegram
    errors are logged and dropped.
    """

    def __init__(self, bot: Any, chat_id: str):
        """
        Args:
            bot: telegram.Bot (or anything with an async send_message)
            chat_id: Target chat/channel id
        """
        self.bot = bot
        self.chat_id = chat_id

    async def publish(self, subscriber_key: str, event: Dict[str, Any]) -> None:
        text = f"👤 {subscriber_key}\n{format_status_update(event)}"
        try:
            await self.bot.send_message(chat_id=self.chat_id, text=text)
        except RetryAfter as e:
            logger.warning("Telegram rate limit (429): retry after %s seconds", e.retry_after)
            retry_after = e.retry_after.total_seconds() if hasattr(e.retry_after, "total_seconds") else e.retry_after
            await asyncio.sleep(float(retry_after) + 1)
            try:
                await self.bot.send_message(chat_id=self.chat_id, text=text)
            except TelegramError as e2:
                logger.warning("Telegram notification dropped after retry: %s", e2)
        except TelegramError as e:
            logger.warning("Telegram notification failed: %s", e)


class CompositeFanout:
    """Publishes to several fanouts; one failing target does not stop the others."""

    def __init__(self, targets: List[NotificationFanout]):
        self.targets = list(targets)

    async def publish(self, subscriber_key: str, event: Dict[str, Any]) -> None:
        results = await asyncio.gather(
            *(t.publish(subscriber_key, event) for t in self.targets),
            return_exceptions=True,
        )
        for target, result in zip(self.targets, results):
            if isinstance(result, Exception):
                logger.warning("Notification target %s failed: %s", type(target).__name__, result)
