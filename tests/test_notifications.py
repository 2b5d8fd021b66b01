# tests/test_notifications.py
"""
Notification Fanout Tests - Logging, Telegram and Composite Delivery

Files that USE this module:
- pytest (test runner executes these tests)

Files that this module USES:
- xramp.adapters.notifications (fanout implementations)
- telegram.error (RetryAfter, TelegramError for failure paths)
- unittest.mock (AsyncMock bot, patched asyncio.sleep)
"""
import asyncio  # Run async code from synchronous tests
import logging  # Capture log records
from unittest.mock import AsyncMock, patch  # Async mocks and patching for the Telegram bot

from telegram.error import RetryAfter, TelegramError  # Telegram API error exceptions

from xramp.adapters.notifications import CompositeFanout, LoggingFanout, TelegramFanout  # Notification targets to test

EVENT = {"transaction_id": "abcdef0123456789", "status": "usdt_sent", "usdt_amount": "405.00"}


class TestLoggingFanout:
    def test_logs_event(self, caplog):
        with caplog.at_level(logging.INFO, logger="xramp.adapters.notifications.fanout"):
            asyncio.run(LoggingFanout().publish("user-1", EVENT))
        assert "user=user-1 tx=abcdef0123456789 status=usdt_sent" in caplog.text


class TestTelegramFanout:
    def test_sends_formatted_message(self):
        bot = AsyncMock()
        asyncio.run(TelegramFanout(bot, "-100123").publish("user-1", EVENT))
        kwargs = bot.send_message.call_args.kwargs
        assert kwargs["chat_id"] == "-100123"
        assert kwargs["text"].startswith("👤 user-1\n📤 Transaction abcdef01: usdt_sent")

    def test_retry_after_is_retried_once(self):
        bot = AsyncMock()
        bot.send_message.side_effect = [RetryAfter(2), None]
        with patch("xramp.adapters.notifications.fanout.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            asyncio.run(TelegramFanout(bot, "-100123").publish("user-1", EVENT))
        assert bot.send_message.call_count == 2
        mock_sleep.assert_awaited_once()

    def test_second_rate_limit_is_dropped(self):
        bot = AsyncMock()
        bot.send_message.side_effect = [RetryAfter(2), RetryAfter(2)]
        with patch("xramp.adapters.notifications.fanout.asyncio.sleep", new=AsyncMock()):
            asyncio.run(TelegramFanout(bot, "-100123").publish("user-1", EVENT))
        assert bot.send_message.call_count == 2

    def test_telegram_error_is_swallowed(self):
        bot = AsyncMock()
        bot.send_message.side_effect = TelegramError("Chat not found")
        asyncio.run(TelegramFanout(bot, "-100123").publish("user-1", EVENT))
        assert bot.send_message.call_count == 1


class TestCompositeFanout:
    def test_failing_target_does_not_block_others(self):
        broken = AsyncMock()
        broken.publish.side_effect = RuntimeError("boom")
        healthy = AsyncMock()
        asyncio.run(CompositeFanout([broken, healthy]).publish("user-1", EVENT))
        healthy.publish.assert_awaited_once_with("user-1", EVENT)
