# tests/test_formatter.py
"""
Formatter Tests - Unit Tests for Message Formatting Functions

This module contains unit tests for the message formatting functions used by
the admin commands and the status update notifications.

Files that USE this module:
- pytest (test runner executes these tests)

Files that this module USES:
- xramp.adapters.formatting.formatter (all formatter functions for testing)
- xramp.domain.models (quote, tier, stats and transaction types for test data)
"""
from datetime import datetime, timedelta, timezone  # Date/time utilities for timestamps
from decimal import Decimal  # Exact amounts in assertions

from xramp.adapters.formatting.formatter import (  # Formatter functions to test
    _fmt_elapsed,
    format_comparison,
    format_market_rate,
    format_quote,
    format_stats,
    format_status_update,
    format_tiers,
    format_transaction,
)
from xramp.application.stats import StatisticsAggregator  # Transaction statistics
from xramp.domain.models import (  # Domain models for fixtures
    ConversionQuote,
    MarketComparison,
    TierInfo,
    TransactionStatus,
)

from tests.conftest import make_tx  # Transaction factory


class TestTierAndQuote:
    def test_format_tiers(self):
        tiers = [
            TierInfo("Standard", Decimal("0"), Decimal("500"), Decimal("0.90"), Decimal("50"), Decimal("45.00")),
            TierInfo("Premium", Decimal("2000"), None, Decimal("0.96"), Decimal("2050"), Decimal("1968.00")),
        ]
        result = format_tiers(tiers)
        assert "• Standard: $0.00 – $500.00 @ 0.90" in result
        assert "• Premium: $2,000.00 – unlimited @ 0.96" in result
        assert "pay $2,050.00 → receive 1,968.00 USDT" in result

    def test_format_quote(self):
        quote = ConversionQuote(
            usd_amount=Decimal("450"), usdt_amount=Decimal("405.00"), rate=Decimal("0.90"),
            fee_amount=Decimal("45.00"), fee_percentage=Decimal("10.00"), tier_name="Standard",
        )
        result = format_quote(quote)
        assert "Quote (Standard tier)" in result
        assert "You pay: $450.00" in result
        assert "You receive: 405.00 USDT" in result
        assert "Service fee: $45.00 (10.00%)" in result
        assert "Rate: 1 USD = 0.90 USDT" in result


class TestMarketFormatting:
    def test_market_rate_plain(self):
        assert format_market_rate(Decimal("0.999600")) == "📊 Market rate: 1 USD = 0.999600 USDT"

    def test_market_rate_with_snapshot(self):
        result = format_market_rate(
            Decimal("1.000000"),
            {"source": "binance", "is_fresh": False, "fetched_at": "2025-01-01T00:00:00+00:00"},
        )
        assert "Source: binance (stale)" in result
        assert "⏱️ 2025-01-01T00:00:00+00:00" in result

    def test_comparison(self):
        cmp = MarketComparison(
            usd_amount=Decimal("450"), market_rate=Decimal("1.000000"), market_usdt=Decimal("450.00"),
            our_rate=Decimal("0.90"), our_usdt=Decimal("405.00"), difference_usdt=Decimal("45.00"),
            difference_percentage=Decimal("10.00"), source="coingecko",
        )
        result = format_comparison(cmp)
        assert "Market (coingecko): 1.000000 → 450.00 USDT" in result
        assert "Difference: 45.00 USDT (10.00%)" in result


class TestStatsFormatting:
    def test_empty_stats(self):
        result = format_stats(StatisticsAggregator().aggregate([]))
        assert "Total: 0" in result
        assert "Success rate: 0%" in result
        assert "Recent:" not in result

    def test_zero_counts_omitted_and_recent_listed(self):
        tx = make_tx(status=TransactionStatus.COMPLETED)
        result = format_stats(StatisticsAggregator().aggregate([tx]), recent=[tx])
        assert "🎉 completed: 1" in result
        assert "failed: 0" not in result
        assert f"{tx.id[:8]} $450.00 → 405.00 USDT (completed)" in result


class TestTransactionFormatting:
    def test_full_transaction(self):
        start = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        tx = make_tx(
            status=TransactionStatus.COMPLETED,
            transaction_hash="SIMULATED_abc",
            card_last4="4242",
            card_brand="visa",
            initiated_at=start,
            completed_at=start + timedelta(seconds=3661),
            metadata={"tier_name": "Standard", "explorer_url": "https://tronscan.org/#/transaction/SIMULATED_abc"},
        )
        result = format_transaction(tx)
        assert f"Transaction {tx.id}" in result
        assert "Provider: stripe (pi_123)" in result
        assert "Tier: Standard @ 0.90" in result
        assert "Card: visa •••• 4242" in result
        assert "Hash: SIMULATED_abc" in result
        assert "Explorer: https://tronscan.org/#/transaction/SIMULATED_abc" in result
        assert "Created: 2025-01-01 12:00 UTC" in result
        assert "Processing time: 1h:01min" in result

    def test_failed_transaction_shows_error(self):
        result = format_transaction(make_tx(status=TransactionStatus.FAILED, error_message="Card declined"))
        assert "Error: Card declined" in result
        assert "Processing time" not in result


class TestStatusUpdate:
    def test_sent_includes_amount_and_hash(self):
        result = format_status_update({
            "transaction_id": "abcdef0123456789",
            "status": "usdt_sent",
            "usdt_amount": "405.00",
            "transaction_hash": "0xfeed",
        })
        assert result.startswith("📤 Transaction abcdef01: usdt_sent")
        assert "405.00 USDT" in result
        assert "Hash: 0xfeed" in result

    def test_confirmed_omits_amount(self):
        result = format_status_update({"transaction_id": "t1", "status": "payment_confirmed", "usdt_amount": "405.00"})
        assert "USDT" not in result

    def test_failure_reason(self):
        result = format_status_update({"transaction_id": "t1", "status": "failed", "error_message": "timeout"})
        assert "Reason: timeout" in result


class TestUtilityFunctions:
    def test_fmt_elapsed_hours_minutes(self):
        assert _fmt_elapsed(3661) == "1h:01min"  # 1 hour 1 minute
        assert _fmt_elapsed(7200) == "2h:00min"  # 2 hours exactly

    def test_fmt_elapsed_minutes_only(self):
        assert _fmt_elapsed(300) == "5min"
        assert _fmt_elapsed(60) == "1min"

    def test_fmt_elapsed_seconds(self):
        assert _fmt_elapsed(42) == "42s"

    def test_fmt_elapsed_negative(self):
        assert _fmt_elapsed(-100) == "0s"  # Should clamp to 0
