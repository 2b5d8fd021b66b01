"""
Formatting Adapters - Message Formatting

This package contains formatters for Telegram output.
"""

from xramp.adapters.formatting.formatter import (
    format_comparison,
    format_market_rate,
    format_quote,
    format_stats,
    format_status_update,
    format_tiers,
    format_transaction,
)

__all__ = [
    "format_comparison",
    "format_market_rate",
    "format_quote",
    "format_stats",
    "format_status_update",
    "format_tiers",
    "format_transaction",
]
