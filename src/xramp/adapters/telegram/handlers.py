# src/xramp/adapters/telegram/handlers.py
"""
Telegram Handlers - Operator Commands

Admin-only commands for looking into the engine from Telegram:
/tiers, /quote <amount>, /rate, /compare <amount>, /stats [user_id], /tx <id>.
Every command checks the admin username and the rate limiter first.

Files that USE this module:
- xramp.app (build_handlers function creates handler instances)
- tests.test_telegram_handlers (unit tests)

Files that this module USES:
- xramp.adapters.formatting.formatter (all formatter functions)
- xramp.shared.rate_limiter (rate limiting functionality)
- xramp.domain.errors (InputError, TransactionNotFoundError)
- xramp.config (settings for admin username)
"""
from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Optional

from telegram import Update
from telegram.ext import CommandHandler, ContextTypes

from xramp.adapters.formatting.formatter import (
    format_comparison,
    format_market_rate,
    format_quote,
    format_stats,
    format_tiers,
    format_transaction,
)
from xramp.config import settings
from xramp.domain.errors import DomainError, InputError, TransactionNotFoundError
from xramp.shared.rate_limiter import RATE_LIMITS, rate_limiter

if TYPE_CHECKING:
    from xramp.app import Engine

logger = logging.getLogger(__name__)

ADMIN_ONLY_MESSAGE = "⚠️ This command is only available to the operator."
RATE_LIMITED_MESSAGE = "⏰ Rate limit exceeded. Please try again later."
PRICING_ERROR_MESSAGE = "❌ Pricing is misconfigured; check the logs."


def _check_rate_limit(update: Update, limit_type: str) -> bool:
    """
    Check if user is within configured rate limits.

    Buckets are namespaced by limit type so market queries (which hit the
    external feeds) do not eat into the general command budget:
    - admin:user:123 for admin commands
    - market:user:123 for /rate and /compare

    Returns:
        True if allowed, False if rate limit exceeded
    """
    config = RATE_LIMITS.get(limit_type)
    if not config:
        return True  # No rate limit configured

    user_id = str(update.effective_user.id)
    prefix = "market" if limit_type == "market_query" else "admin"
    identifier = f"{prefix}:user:{user_id}"

    if not rate_limiter.is_allowed(identifier, config):
        logger.warning(
            "Rate limit exceeded for %s (type=%s, blocked_until=%s)",
            identifier,
            limit_type,
            rate_limiter.blocked_until(identifier),
        )
        return False
    return True


def _is_admin(update: Update) -> bool:
    """
    True when the sender's username matches ADMIN_USERNAME.

    With no ADMIN_USERNAME configured nobody is an operator.
    """
    admin = (settings.admin_username or "").lstrip("@").lower()
    if not admin:
        return False
    user = update.effective_user
    uname = (user.username or "").lstrip("@").lower() if user else ""
    return uname == admin


async def _guard(update: Update, limit_type: str = "admin_command") -> bool:
    if not _is_admin(update):
        await update.message.reply_text(ADMIN_ONLY_MESSAGE)
        return False
    if not _check_rate_limit(update, limit_type):
        await update.message.reply_text(RATE_LIMITED_MESSAGE)
        return False
    return True


def _first_arg(context: ContextTypes.DEFAULT_TYPE) -> Optional[str]:
    args = getattr(context, "args", None) or []
    return args[0] if args else None


# --- /tiers: pricing schedule ---
async def tiers_cmd(engine: "Engine", update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _guard(update):
        return
    await update.message.reply_text(format_tiers(engine.calculator.list_tiers()))


# --- /quote <amount>: tiered conversion for an amount ---
async def quote_cmd(engine: "Engine", update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _guard(update):
        return
    amount = _first_arg(context)
    if amount is None:
        await update.message.reply_text("Usage: /quote <usd_amount>")
        return
    try:
        quote = engine.calculator.calculate_conversion(amount)
    except InputError as e:
        await update.message.reply_text(f"❌ {e}")
        return
    except DomainError:
        logger.exception("Quote failed for amount=%s", amount)
        await update.message.reply_text(PRICING_ERROR_MESSAGE)
        return
    await update.message.reply_text(format_quote(quote))


# --- /rate: cached market rate ---
async def rate_cmd(engine: "Engine", update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _guard(update, "market_query"):
        return
    try:
        rate = await engine.market_rate.get()
        await update.message.reply_text(format_market_rate(rate, engine.market_rate.snapshot()))
    except Exception as e:
        logger.exception("Failed to read market rate")
        await update.message.reply_text(f"❌ Could not read the market rate: {e}")


# --- /compare <amount>: our quote against the market ---
async def compare_cmd(engine: "Engine", update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _guard(update, "market_query"):
        return
    amount = _first_arg(context)
    if amount is None:
        await update.message.reply_text("Usage: /compare <usd_amount>")
        return
    try:
        quote = engine.calculator.calculate_conversion(amount)
    except InputError as e:
        await update.message.reply_text(f"❌ {e}")
        return
    except DomainError:
        logger.exception("Quote for comparison failed for amount=%s", amount)
        await update.message.reply_text(PRICING_ERROR_MESSAGE)
        return
    try:
        comparison = await engine.market_rate.compare_with_market(quote)
    except Exception as e:
        logger.exception("Market comparison failed for amount=%s", amount)
        await update.message.reply_text(f"❌ Comparison failed: {e}")
        return
    await update.message.reply_text(format_comparison(comparison))


# --- /stats [user_id]: aggregate statistics ---
async def stats_cmd(engine: "Engine", update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _guard(update):
        return
    user_id = _first_arg(context)
    if user_id:
        summary = engine.stats.user_summary(engine.store, user_id)
    else:
        summary = engine.stats.admin_summary(engine.store)
    text = format_stats(summary["stats"], summary["recent"])
    by_provider = summary.get("by_provider")
    if by_provider:
        text += "\n\nBy provider: " + ", ".join(f"{k}={v}" for k, v in sorted(by_provider.items()))
    await update.message.reply_text(text)


# --- /tx <id>: one transaction ---
async def tx_cmd(engine: "Engine", update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _guard(update):
        return
    tx_id = _first_arg(context)
    if tx_id is None:
        await update.message.reply_text("Usage: /tx <transaction_id>")
        return
    try:
        tx = engine.payments.get_transaction(tx_id)
    except TransactionNotFoundError:
        await update.message.reply_text(f"⚠️ Transaction {tx_id} not found.")
        return
    await update.message.reply_text(format_transaction(tx))


def build_handlers(engine: "Engine"):
    """
    Build and return list of Telegram bot handlers bound to an engine.

    Returns:
        List of handler instances for registration with bot
    """
    return [
        CommandHandler("tiers", partial(tiers_cmd, engine)),
        CommandHandler("quote", partial(quote_cmd, engine)),
        CommandHandler("rate", partial(rate_cmd, engine)),
        CommandHandler("compare", partial(compare_cmd, engine)),
        CommandHandler("stats", partial(stats_cmd, engine)),
        CommandHandler("tx", partial(tx_cmd, engine)),
    ]
