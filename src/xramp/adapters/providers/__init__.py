"""
Market Rate Feeds - External API Implementations

This package contains implementations for fetching the USD/USDT market rate.
"""

from xramp.adapters.providers.base import RateFeed
from xramp.adapters.providers.binance import BinanceRateFeed
from xramp.adapters.providers.coingecko import CoinGeckoRateFeed

__all__ = ["RateFeed", "BinanceRateFeed", "CoinGeckoRateFeed"]
