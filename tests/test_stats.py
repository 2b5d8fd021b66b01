# tests/test_stats.py
"""
Statistics Tests - Aggregation over Transaction Sets

Files that USE this module:
- pytest (test runner executes these tests)

Files that this module USES:
- xramp.application.stats (StatisticsAggregator, most_recent)
- tests.conftest (make_tx)
"""
from datetime import datetime, timedelta, timezone  # Date/time utilities for timestamps
from decimal import Decimal  # Exact amounts in assertions

from xramp.adapters.persistence import InMemoryTransactionStore  # In-memory transaction store
from xramp.application.stats import StatisticsAggregator, most_recent  # Aggregator under test
from xramp.domain.models import PaymentProvider, TransactionStatus  # Domain enums

from tests.conftest import make_tx  # Transaction factory

S = TransactionStatus


class TestAggregate:
    def test_empty_set_is_all_zero(self):
        stats = StatisticsAggregator().aggregate([])
        assert stats.total_transactions == 0
        assert stats.total_usd == Decimal("0")
        assert stats.total_usdt == Decimal("0")
        assert stats.total_fees == Decimal("0")
        assert stats.average_usd == Decimal("0")
        assert stats.success_rate == Decimal("0")
        assert set(stats.count_by_status) == {s.value for s in S}
        assert all(v == 0 for v in stats.count_by_status.values())

    def test_sums_and_rates(self):
        txs = [
            make_tx(status=S.COMPLETED, amount_usd=Decimal("450"), usdt_amount=Decimal("405.00"),
                    fee_amount=Decimal("45.00")),
            make_tx(status=S.COMPLETED, amount_usd=Decimal("100"), usdt_amount=Decimal("88.00"),
                    fee_amount=Decimal("12.00")),
            make_tx(status=S.FAILED, amount_usd=Decimal("50"), usdt_amount=Decimal("42.50"),
                    fee_amount=Decimal("7.50")),
        ]
        stats = StatisticsAggregator().aggregate(txs)
        assert stats.total_transactions == 3
        assert stats.completed_count == 2
        assert stats.failed_count == 1
        assert stats.total_usd == Decimal("600")
        assert stats.total_usdt == Decimal("535.50")
        assert stats.total_fees == Decimal("64.50")
        assert stats.average_usd == Decimal("200.00")
        assert stats.success_rate == Decimal("66.66")

    def test_missing_fee_counts_as_zero(self):
        stats = StatisticsAggregator().aggregate([make_tx(fee_amount=None)])
        assert stats.total_fees == Decimal("0")

    def test_user_filter(self):
        txs = [make_tx(user_id="a"), make_tx(user_id="b"), make_tx(user_id="a")]
        assert StatisticsAggregator().aggregate(txs, user_id="a").total_transactions == 2


class TestSummaries:
    def test_most_recent_is_newest_first(self):
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        txs = [make_tx(initiated_at=base + timedelta(minutes=i)) for i in range(8)]
        recent = most_recent(txs, limit=3)
        assert [t.initiated_at.minute for t in recent] == [7, 6, 5]

    def test_admin_summary(self):
        store = InMemoryTransactionStore()
        store.add(make_tx(provider_payment_id="pi_1"))
        store.add(make_tx(provider=PaymentProvider.TRANSAK, provider_payment_id=None))
        summary = StatisticsAggregator().admin_summary(store)
        assert summary["stats"].total_transactions == 2
        assert summary["by_provider"] == {"stripe": 1, "transak": 1}
        assert len(summary["recent"]) == 2

    def test_user_summary(self):
        store = InMemoryTransactionStore()
        store.add(make_tx(user_id="a", provider_payment_id="pi_1"))
        store.add(make_tx(user_id="b", provider_payment_id="pi_2"))
        summary = StatisticsAggregator().user_summary(store, "a")
        assert summary["stats"].total_transactions == 1
        assert [t.user_id for t in summary["recent"]] == ["a"]
