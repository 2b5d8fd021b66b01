# src/xramp/adapters/providers/base.py
"""
Base Rate Feed Interface

This module defines the abstract base class for USDT market rate feeds.
It establishes the contract that all feed implementations must follow.

Files that USE this module:
- xramp.adapters.providers.binance (BinanceRateFeed implements RateFeed)
- xramp.adapters.providers.coingecko (CoinGeckoRateFeed implements RateFeed)
- xramp.application.market_rate (MarketRateCache and FeedChain depend on RateFeed)
- tests.test_rate_feeds (unit tests)

Files that this module USES:
- None (pure interface definition)
"""
from abc import ABC, abstractmethod
from decimal import Decimal


class RateFeed(ABC):
    name: str = "feed"

    @abstractmethod
    def fetch_usd_rate(self) -> Decimal:
        """Return USDT received per 1 USD at the market, or raise RateFeedError."""
        raise NotImplementedError
