# src/xramp/application/stats.py
"""
Statistics Aggregator - Counts and Sums over Transactions

Pure aggregation over a transaction set: per-status counts, volumes, fee
revenue and success rate. An empty set yields zeroed statistics.

Files that USE this module:
- xramp.adapters.telegram.handlers (/stats)
- xramp.app (engine wiring)
- tests.test_stats (unit tests)

Files that this module USES:
- xramp.domain.models (Transaction, TransactionStats, TransactionStatus)
- xramp.adapters.persistence (TransactionStore protocol, for summaries)
"""
from __future__ import annotations

import logging
from collections import Counter
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from xramp.adapters.persistence.transaction_store import TransactionStore
from xramp.domain.models import Transaction, TransactionStats, TransactionStatus, truncate_cents

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
RECENT_LIMIT = 5


def most_recent(transactions: Iterable[Transaction], limit: int = RECENT_LIMIT) -> List[Transaction]:
    return sorted(transactions, key=lambda t: t.initiated_at, reverse=True)[:limit]


class StatisticsAggregator:
    """Computes TransactionStats on demand."""

    def aggregate(self, transactions: Iterable[Transaction], user_id: Optional[str] = None) -> TransactionStats:
        """
        Aggregate a transaction set.

        Args:
            transactions: Transactions to aggregate
            user_id: Restrict to one user's transactions when given

        Returns:
            TransactionStats; success_rate is the completed share in percent
        """
        txs = [t for t in transactions if user_id is None or t.user_id == user_id]
        counts = Counter(t.status.value for t in txs)
        count_by_status = {s.value: counts.get(s.value, 0) for s in TransactionStatus}

        total = len(txs)
        total_usd = sum((t.amount_usd for t in txs), ZERO)
        total_usdt = sum((t.usdt_amount for t in txs), ZERO)
        total_fees = sum((t.fee_amount for t in txs if t.fee_amount is not None), ZERO)
        completed = count_by_status[TransactionStatus.COMPLETED.value]
        failed = count_by_status[TransactionStatus.FAILED.value]

        if total:
            average = truncate_cents(total_usd / total)
            success_rate = truncate_cents(Decimal(completed) * 100 / total)
        else:
            average = ZERO
            success_rate = ZERO

        return TransactionStats(
            total_transactions=total,
            count_by_status=count_by_status,
            completed_count=completed,
            failed_count=failed,
            total_usd=total_usd,
            total_usdt=total_usdt,
            total_fees=total_fees,
            average_usd=average,
            success_rate=success_rate,
        )

    def by_provider(self, transactions: Iterable[Transaction]) -> Dict[str, int]:
        """Count transactions per payment provider."""
        return dict(Counter(t.provider.value for t in transactions))

    def user_summary(self, store: TransactionStore, user_id: str, recent: int = RECENT_LIMIT) -> Dict[str, Any]:
        """
        Statistics for one user plus their most recent transactions.

        Returns:
            Dict with 'stats' (TransactionStats) and 'recent' (list of Transaction)
        """
        txs = store.for_user(user_id)
        return {"stats": self.aggregate(txs), "recent": most_recent(txs, recent)}

    def admin_summary(self, store: TransactionStore, recent: int = RECENT_LIMIT) -> Dict[str, Any]:
        """
        Statistics over all transactions for the operator view.

        Returns:
            Dict with 'stats', 'by_provider' and 'recent'
        """
        txs = store.all()
        logger.debug("Building admin summary over %d transactions", len(txs))
        return {
            "stats": self.aggregate(txs),
            "by_provider": self.by_provider(txs),
            "recent": most_recent(txs, recent),
        }
