# src/xramp/application/market_rate.py
"""
Market Rate Cache - Reference USD/USDT Rate with TTL and Fallback

The market rate is informational: it is shown next to our tier rates so users
can compare, and it never feeds into pricing. The cache therefore never
raises; when the feed is slow or down it answers with the last known value or
a fixed fallback.

Files that USE this module:
- xramp.app (builds the cache with a FeedChain)
- xramp.adapters.telegram.handlers (/rate, /compare)
- tests.test_market_rate (unit tests)

Files that this module USES:
- xramp.adapters.providers.base (RateFeed interface)
- xramp.domain.models (ConversionQuote, MarketComparison)
- xramp.config (settings for TTL, timeout and fallback)
"""
from __future__ import annotations  # Enable postponed evaluation of annotations

import asyncio  # Refresh lock, executor offloading and timeouts
import logging  # Standard library for logging messages and errors
import time  # Monotonic clock for freshness checks
from datetime import datetime  # Timestamp of the last successful fetch
from decimal import Decimal  # Exact rate arithmetic
from typing import Any, Callable, Dict, Optional  # Type hints

from xramp.adapters.providers.base import RateFeed  # Feed contract
from xramp.config import settings  # TTL, timeout and fallback
from xramp.domain.errors import RateFeedError
from xramp.domain.models import (
    ConversionQuote,
    MarketComparison,
    to_decimal,
    truncate_cents,
    utcnow,
)

logger = logging.getLogger(__name__)

FALLBACK_SOURCE = "fallback"


class FeedChain(RateFeed):
    """
    Feed chain that tries a primary feed, then a fallback feed.
    Tracks which feed actually answered.
    """

    name = "chain"

    def __init__(self, primary: RateFeed, fallback: RateFeed):
        self.primary = primary
        self.fallback = fallback
        self.last_used_feed: Optional[str] = None

    def fetch_usd_rate(self) -> Decimal:
        """
        Raises:
            RateFeedError: If both feeds fail
        """
        try:
            rate = self.primary.fetch_usd_rate()
            self.last_used_feed = self.primary.name
            return rate
        except Exception as e:
            logger.warning("Primary feed (%s) failed, trying fallback (%s): %s",
                           self.primary.name, self.fallback.name, e)
            try:
                rate = self.fallback.fetch_usd_rate()
                self.last_used_feed = self.fallback.name
                return rate
            except Exception as e2:
                logger.error("Both feeds failed. Primary: %s, Fallback: %s", e, e2)
                raise RateFeedError(f"All feeds failed: primary={e}, fallback={e2}") from e2

    def get_last_feed(self) -> Optional[str]:
        return self.last_used_feed


class MarketRateCache:
    """
    Single cached market rate with a freshness window.

    Concurrent callers that find the value stale share one refresh.
    """

    def __init__(
        self,
        feed: RateFeed,
        ttl: Optional[float] = None,
        fallback_rate: Any = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            feed: Synchronous rate feed (run in an executor)
            ttl: Freshness window in seconds (defaults to settings.market_rate_ttl_seconds)
            fallback_rate: Value used when no fetch ever succeeded (defaults to settings.market_rate_fallback, 1.0)
            timeout: Upper bound for one refresh in seconds
            clock: Monotonic clock, injectable for tests
        """
        self.feed = feed
        self.ttl = float(ttl if ttl is not None else settings.market_rate_ttl_seconds)
        self.fallback_rate = to_decimal(
            fallback_rate if fallback_rate is not None else settings.market_rate_fallback
        )
        self.timeout = timeout if timeout is not None else settings.rate_feed_timeout_seconds
        self._clock = clock
        self._value: Optional[Decimal] = None
        self._fetched_at: Optional[float] = None
        self._fetched_wall: Optional[datetime] = None
        self._source: Optional[str] = None
        self._refresh_lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        if self._value is None or self._fetched_at is None:
            return False
        return self._clock() - self._fetched_at < self.ttl

    def _best_effort(self) -> Decimal:
        return self._value if self._value is not None else self.fallback_rate

    def _store(self, rate: Decimal) -> None:
        self._value = rate
        self._fetched_at = self._clock()
        self._fetched_wall = utcnow()
        getter = getattr(self.feed, "get_last_feed", None)
        self._source = (getter() if getter else None) or self.feed.name

    async def get(self) -> Decimal:
        """
        Get the market rate (USDT per 1 USD).

        Returns:
            Fresh cached value, a newly fetched value, the last known value
            on feed failure, or the fallback constant if nothing was ever fetched
        """
        if self._is_fresh():
            logger.debug("Using cached market rate %s", self._value)
            return self._value  # type: ignore[return-value]

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited
            if self._is_fresh():
                return self._value  # type: ignore[return-value]

            loop = asyncio.get_running_loop()
            try:
                rate = await asyncio.wait_for(
                    loop.run_in_executor(None, self.feed.fetch_usd_rate),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Market rate refresh timed out after %ss, using %s",
                               self.timeout, self._best_effort())
                return self._best_effort()
            except Exception as e:
                logger.warning("Market rate refresh failed (%s), using %s", e, self._best_effort())
                return self._best_effort()

            try:
                rate = to_decimal(rate)
            except Exception as e:
                logger.warning("Market rate feed returned unusable value %r: %s", rate, e)
                return self._best_effort()
            if rate <= 0:
                logger.warning("Market rate feed returned non-positive value %s", rate)
                return self._best_effort()

            self._store(rate)
            logger.info("Market rate updated: %s (source=%s, ttl=%ss)", rate, self._source, self.ttl)
            return rate

    def get_sync(self) -> Decimal:
        """
        Blocking variant for callers outside an event loop.

        Same semantics as get() but without the timeout wrapper; the feed's
        own HTTP timeout bounds the call.
        """
        if self._is_fresh():
            return self._value  # type: ignore[return-value]
        try:
            rate = to_decimal(self.feed.fetch_usd_rate())
        except Exception as e:
            logger.warning("Market rate refresh failed (%s), using %s", e, self._best_effort())
            return self._best_effort()
        if rate <= 0:
            return self._best_effort()
        self._store(rate)
        return rate

    def invalidate(self) -> None:
        """Force the next get() to refresh (last known value is kept for fallback)."""
        self._fetched_at = None

    def snapshot(self) -> Dict[str, Any]:
        """Health view of the cache."""
        return {
            "value": self._value,
            "fetched_at": self._fetched_wall.isoformat() if self._fetched_wall else None,
            "is_fresh": self._is_fresh(),
            "source": self._source or FALLBACK_SOURCE,
            "fallback_rate": self.fallback_rate,
        }

    async def compare_with_market(self, quote: ConversionQuote) -> MarketComparison:
        """
        Compare a quote with what the market rate would give.

        Args:
            quote: Quote from the conversion calculator

        Returns:
            MarketComparison; difference_usdt is market minus ours (our margin)
        """
        market_rate = await self.get()
        market_usdt = truncate_cents(quote.usd_amount * market_rate)
        difference = market_usdt - quote.usdt_amount
        pct = truncate_cents(difference / market_usdt * Decimal("100")) if market_usdt > 0 else Decimal("0")
        return MarketComparison(
            usd_amount=quote.usd_amount,
            market_rate=market_rate,
            market_usdt=market_usdt,
            our_rate=quote.rate,
            our_usdt=quote.usdt_amount,
            difference_usdt=difference,
            difference_percentage=pct,
            source=self._source if self._value is not None else FALLBACK_SOURCE,
        )
