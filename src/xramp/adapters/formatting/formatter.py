# src/xramp/adapters/formatting/formatter.py
"""
Message Formatter - Text Formatting and Presentation

This module handles all text formatting for Telegram messages: the tier table,
quotes, market comparisons, statistics, single transactions and the status
updates pushed on every lifecycle transition.

Files that USE this module:
- xramp.adapters.telegram.handlers (admin command replies)
- xramp.adapters.notifications.fanout (status update messages)
- tests.test_formatter (unit tests)

Files that this module USES:
- xramp.domain.models (TierInfo, ConversionQuote, MarketComparison, TransactionStats, Transaction)
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from xramp.domain.models import (
    ConversionQuote,
    MarketComparison,
    TierInfo,
    Transaction,
    TransactionStats,
    TransactionStatus,
)

STATUS_ICONS = {
    TransactionStatus.INITIATED.value: "🆕",
    TransactionStatus.PENDING.value: "⏳",
    TransactionStatus.PAYMENT_PROCESSING.value: "💳",
    TransactionStatus.PAYMENT_CONFIRMED.value: "✅",
    TransactionStatus.CONVERTING_TO_USDT.value: "🔄",
    TransactionStatus.USDT_SENT.value: "📤",
    TransactionStatus.COMPLETED.value: "🎉",
    TransactionStatus.FAILED.value: "❌",
    TransactionStatus.CANCELLED.value: "🚫",
}


def _money(value: Optional[Decimal]) -> str:
    """Format a money amount with thousands separators and 2 decimals, or N/A."""
    if value is None:
        return "N/A"
    return f"{value:,.2f}"


def _fmt_elapsed(seconds: int) -> str:
    """
    Format elapsed time as 'Xh:YYmin', 'Ymin' or 'Zs'.

    Args:
        seconds: Elapsed time in seconds (clamped to >= 0)
    """
    if seconds < 0:
        seconds = 0
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    hours = minutes // 60
    mins_only = minutes % 60
    if hours > 0:
        return f"{hours}h:{mins_only:02d}min"
    return f"{mins_only}min"


def format_tiers(tiers: Iterable[TierInfo]) -> str:
    """
    Format the conversion tier table with a worked example per tier.

    Returns:
        Multi-line string, one block per tier
    """
    lines = ["💱 Conversion tiers (USD → USDT)", ""]
    for tier in tiers:
        upper = f"${_money(tier.max_usd)}" if tier.max_usd is not None else "unlimited"
        lines.append(f"• {tier.name}: ${_money(tier.min_usd)} – {upper} @ {tier.rate}")
        lines.append(f"   e.g. pay ${_money(tier.example_pay)} → receive {_money(tier.example_receive)} USDT")
    return "\n".join(lines)


def format_quote(quote: ConversionQuote) -> str:
    breakdown = quote.breakdown()
    return (
        f"🧾 Quote ({quote.tier_name} tier)\n"
        f"— You pay: ${_money(breakdown['you_pay'])}\n"
        f"— You receive: {_money(breakdown['you_receive'])} USDT\n"
        f"— Service fee: ${_money(breakdown['service_fee'])} ({quote.fee_percentage}%)\n"
        f"— Rate: {breakdown['rate']}"
    )


def format_market_rate(rate: Decimal, snapshot: Optional[Dict[str, Any]] = None) -> str:
    """
    Format the reference market rate with cache freshness details.

    Args:
        rate: USDT per 1 USD
        snapshot: Optional MarketRateCache.snapshot() output
    """
    msg = f"📊 Market rate: 1 USD = {rate} USDT"
    if snapshot:
        fresh = "fresh" if snapshot.get("is_fresh") else "stale"
        msg += f"\n— Source: {snapshot.get('source')} ({fresh})"
        if snapshot.get("fetched_at"):
            msg += f"\n⏱️ {snapshot['fetched_at']}"
    return msg


def format_comparison(cmp: MarketComparison) -> str:
    return (
        f"⚖️ ${_money(cmp.usd_amount)} at market vs our rate\n"
        f"— Market ({cmp.source}): {cmp.market_rate} → {_money(cmp.market_usdt)} USDT\n"
        f"— Ours: {cmp.our_rate} → {_money(cmp.our_usdt)} USDT\n"
        f"— Difference: {_money(cmp.difference_usdt)} USDT ({cmp.difference_percentage}%)"
    )


def format_stats(stats: TransactionStats, recent: Optional[List[Transaction]] = None) -> str:
    """
    Format aggregated statistics, optionally followed by recent transactions.

    Args:
        stats: Aggregated statistics
        recent: Optional most-recent-first transactions to list

    Returns:
        Multi-line string; zero counts are omitted from the per-status block
    """
    lines = [
        "📈 Transaction statistics",
        f"— Total: {stats.total_transactions}",
        f"— Completed: {stats.completed_count}",
        f"— Failed: {stats.failed_count}",
        f"— Success rate: {stats.success_rate}%",
        f"— Volume: ${_money(stats.total_usd)} → {_money(stats.total_usdt)} USDT",
        f"— Fee revenue: ${_money(stats.total_fees)}",
        f"— Average: ${_money(stats.average_usd)}",
    ]
    by_status = [f"{STATUS_ICONS.get(s, '•')} {s}: {n}" for s, n in stats.count_by_status.items() if n]
    if by_status:
        lines.append("")
        lines.extend(by_status)
    if recent:
        lines.append("")
        lines.append("Recent:")
        for tx in recent:
            lines.append(
                f"{STATUS_ICONS.get(tx.status.value, '•')} {tx.id[:8]} ${_money(tx.amount_usd)} "
                f"→ {_money(tx.usdt_amount)} USDT ({tx.status.value})"
            )
    return "\n".join(lines)


def format_transaction(tx: Transaction) -> str:
    """
    Format a single transaction for the admin /tx command.

    Returns:
        Multi-line string with amounts, status, hash and timings
    """
    lines = [
        f"{STATUS_ICONS.get(tx.status.value, '•')} Transaction {tx.id}",
        f"— User: {tx.user_id}",
        f"— Provider: {tx.provider.value}" + (f" ({tx.provider_payment_id})" if tx.provider_payment_id else ""),
        f"— Amount: ${_money(tx.amount_usd)} → {_money(tx.usdt_amount)} USDT",
        f"— Status: {tx.status.value}",
        f"— Wallet: {tx.wallet_address} ({tx.network.value})",
    ]
    tier = tx.metadata.get("tier_name")
    if tier:
        lines.append(f"— Tier: {tier} @ {tx.exchange_rate}")
    if tx.card_last4:
        lines.append(f"— Card: {tx.card_brand or 'card'} •••• {tx.card_last4}")
    if tx.transaction_hash:
        lines.append(f"— Hash: {tx.transaction_hash}")
        url = tx.metadata.get("explorer_url")
        if url:
            lines.append(f"— Explorer: {url}")
    if tx.error_message:
        lines.append(f"— Error: {tx.error_message}")
    lines.append(f"— Created: {tx.initiated_at.strftime('%Y-%m-%d %H:%M UTC')}")
    if tx.processing_time_seconds is not None:
        lines.append(f"— Processing time: {_fmt_elapsed(tx.processing_time_seconds)}")
    return "\n".join(lines)


def format_status_update(event: Dict[str, Any]) -> str:
    """
    Format a lifecycle notification payload (as published by the state machine).

    Args:
        event: Dict with at least transaction_id and status
    """
    status = str(event.get("status", ""))
    icon = STATUS_ICONS.get(status, "•")
    msg = f"{icon} Transaction {str(event.get('transaction_id', ''))[:8]}: {status}"
    if event.get("usdt_amount") and status in (TransactionStatus.USDT_SENT.value, TransactionStatus.COMPLETED.value):
        msg += f"\n— {event['usdt_amount']} USDT"
    if event.get("transaction_hash"):
        msg += f"\n— Hash: {event['transaction_hash']}"
    if event.get("error_message"):
        msg += f"\n— Reason: {event['error_message']}"
    return msg
