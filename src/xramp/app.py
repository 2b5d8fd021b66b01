# src/xramp/app.py
"""
Application Entry Point - Engine Wiring and Operator Bot Startup

This module is the composition root: it builds the transaction engine
(store, transfer executor, state machine, reconciler, payment service,
market rate cache, statistics) from settings, and starts the operator bot.
The HTTP surface embedding the engine calls build_engine() itself.

Files that USE this module:
- python -m xramp (module entry point)
- xramp.adapters.telegram.handlers (Engine type for command handlers)

Files that this module USES:
- xramp.shared.logging_conf (setup_logging for logging configuration)
- xramp.config (settings for configuration management)
- xramp.application (calculator, state machine, reconciler, services)
- xramp.adapters.* (store, transfer, payments, providers, notifications, telegram)
"""

from __future__ import annotations  # Enable postponed evaluation of annotations for forward references

import atexit  # Register cleanup functions to run when program exits
import logging  # Standard library for logging messages and errors
import os  # Process ids and environment variables
import sys  # System-specific parameters and functions for exit codes
from dataclasses import dataclass  # Engine container
from pathlib import Path  # Object-oriented filesystem paths
from typing import Any, Optional  # Type hints

from telegram.error import Conflict, NetworkError, TimedOut  # Telegram API error exceptions

from xramp.adapters.notifications import CompositeFanout, LoggingFanout, TelegramFanout  # Status update targets
from xramp.adapters.payments import PaymentCapture, StripePaymentCapture  # Card provider
from xramp.adapters.persistence import JsonFileTransactionStore, TransactionStore  # Transaction storage
from xramp.adapters.providers import BinanceRateFeed, CoinGeckoRateFeed  # Market rate feeds
from xramp.adapters.telegram import build_application, build_handlers  # Operator bot
from xramp.adapters.transfer import TransferExecutor, build_transfer_executor  # USDT withdrawals
from xramp.application.conversion import ConversionCalculator, build_calculator  # Tier pricing
from xramp.application.market_rate import FeedChain, MarketRateCache  # Cached reference rate
from xramp.application.payment_service import PaymentService  # Order use cases
from xramp.application.reconciler import WebhookReconciler  # Provider webhooks
from xramp.application.state_machine import TransactionStateMachine  # Lifecycle transitions
from xramp.application.stats import StatisticsAggregator  # Transaction statistics
from xramp.shared.logging_conf import setup_logging  # Configure logging with file rotation

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """Everything an outer surface (HTTP API, operator bot) needs."""
    store: TransactionStore
    calculator: ConversionCalculator
    executor: TransferExecutor
    machine: TransactionStateMachine
    reconciler: WebhookReconciler
    payments: PaymentService
    market_rate: MarketRateCache
    stats: StatisticsAggregator
    capture: Optional[PaymentCapture] = None


def build_engine(settings, bot: Any = None, store: Optional[TransactionStore] = None) -> Engine:
    """
    Wire the engine from settings.

    Args:
        settings: Settings instance
        bot: Optional telegram Bot; with NOTIFY_CHAT_ID set, status updates are also sent there
        store: Transaction store override (defaults to the JSON file store)
    """
    store = store if store is not None else JsonFileTransactionStore(settings.transactions_file)
    executor = build_transfer_executor(settings)

    notifier: Any = LoggingFanout()
    if bot is not None and settings.notify_chat_id:
        notifier = CompositeFanout([notifier, TelegramFanout(bot, settings.notify_chat_id)])
        logger.info("Status updates are forwarded to chat %s", settings.notify_chat_id)

    machine = TransactionStateMachine(
        store,
        executor,
        notifier=notifier,
        auto_complete_on_dispatch=settings.auto_complete_on_dispatch,
        transfer_timeout=settings.transfer_timeout_seconds,
        transfer_max_attempts=settings.transfer_max_attempts,
    )

    capture: Optional[PaymentCapture] = None
    if settings.stripe_configured:
        capture = StripePaymentCapture(settings.stripe_secret_key, settings.stripe_webhook_secret)
    else:
        logger.warning("STRIPE_SECRET_KEY not configured. Card payments are disabled.")

    calculator = build_calculator(settings)
    feed = FeedChain(
        BinanceRateFeed(base_url=settings.binance_base_url, timeout=settings.rate_feed_timeout_seconds),
        CoinGeckoRateFeed(timeout=settings.rate_feed_timeout_seconds),
    )

    engine = Engine(
        store=store,
        calculator=calculator,
        executor=executor,
        machine=machine,
        reconciler=WebhookReconciler(machine, capture=capture, onramp_secret=settings.transak_webhook_secret),
        payments=PaymentService(
            machine,
            capture=capture,
            calculator=calculator,
            onramp_min_usd=settings.onramp_min_usd,
            onramp_fee_estimate=settings.onramp_fee_estimate,
        ),
        market_rate=MarketRateCache(
            feed,
            ttl=settings.market_rate_ttl_seconds,
            fallback_rate=settings.market_rate_fallback,
            timeout=settings.rate_feed_timeout_seconds,
        ),
        stats=StatisticsAggregator(),
        capture=capture,
    )
    logger.info(
        "Engine ready: %d stored transactions, transfers=%s, card payments=%s",
        len(store),
        "simulated" if executor.is_simulated else "real",
        "on" if capture is not None else "off",
    )
    return engine


# PID file prevents two bots polling with the same token
def _get_pid_file() -> Path:
    pid_file = os.environ.get("XRAMP_PID_FILE")
    if pid_file:
        return Path(pid_file)
    from xramp.config import settings
    return Path(settings.transactions_file).parent / "bot.pid"


def _check_existing_instance() -> None:
    """Raise RuntimeError if the PID file names a live process; clear stale files."""
    pid_file = _get_pid_file()
    if not pid_file.exists():
        return
    try:
        old_pid = int(pid_file.read_text().strip())
    except (ValueError, OSError):
        pid_file.unlink(missing_ok=True)
        return
    try:
        os.kill(old_pid, 0)  # signal 0 only probes
    except ProcessLookupError:
        pid_file.unlink(missing_ok=True)
        return
    raise RuntimeError(f"Another xramp bot is already running (PID: {old_pid}). Stop it first with: kill {old_pid}")


def _create_pid_file() -> None:
    pid_file = _get_pid_file()
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(os.getpid()))


def _remove_pid_file() -> None:
    try:
        _get_pid_file().unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove PID file: %s", e)


def main() -> None:
    """
    Configure logging, wire the engine and run the operator bot.

    Without BOT_TOKEN there is nothing to run in-process; the engine is
    meant to be embedded by the HTTP surface via build_engine().
    """
    from xramp.config import settings

    setup_logging(
        level=settings.log_level,
        log_file=settings.log_file,
        log_dir=settings.log_dir,
        log_stdout=settings.log_stdout,
        max_bytes=settings.log_max_bytes,
        backup_count=settings.log_backup_count,
    )
    logger.info("Working directory: %s", os.getcwd())

    if not settings.bot_token:
        logger.error("BOT_TOKEN missing; the operator bot cannot start")
        sys.exit(1)

    try:
        _check_existing_instance()
        _create_pid_file()
        atexit.register(_remove_pid_file)
    except RuntimeError as e:
        logger.error(str(e))
        sys.exit(1)

    app = build_application(settings.bot_token)
    engine = build_engine(settings, bot=app.bot)
    for h in build_handlers(engine):
        app.add_handler(h)

    logger.info("Starting operator bot polling…")
    try:
        app.run_polling(close_loop=False, drop_pending_updates=False)
    except Conflict:
        logger.error(
            "Telegram Conflict: another process is polling with this BOT_TOKEN. "
            "Stop it (pkill -f 'python.*xramp') and restart.",
            exc_info=True,
        )
        raise
    except (TimedOut, NetworkError) as e:
        logger.error("Network error talking to Telegram: %s (type: %s)", e, type(e).__name__, exc_info=True)
        raise
    except KeyboardInterrupt:
        logger.info("Bot stopped by user (KeyboardInterrupt)")
        raise
    finally:
        _remove_pid_file()


if __name__ == "__main__":
    main()
