# src/xramp/adapters/providers/coingecko.py
"""
CoinGecko Simple Price Feed (fallback market rate)

CoinGecko quotes tether in USD (USD per 1 USDT); the feed inverts it to get
USDT per 1 USD.

Files that USE this module:
- xramp.app (fallback feed of the market rate chain)
- tests.test_rate_feeds (unit tests)

Files that this module USES:
- xramp.adapters.providers.base (RateFeed interface)
- xramp.config (settings for HTTP timeout)
- xramp.domain.errors (RateFeedError)
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests

from xramp.adapters.providers.base import RateFeed
from xramp.config import settings
from xramp.domain.errors import RateFeedError

log = logging.getLogger(__name__)

COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price"
RATE_PRECISION = Decimal("0.000001")


class CoinGeckoRateFeed(RateFeed):
    name = "coingecko"

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None):
        self.url = url or COINGECKO_URL
        self.timeout = timeout or settings.rate_feed_timeout_seconds

    def fetch_usd_rate(self) -> Decimal:
        """
        Fetch tether's USD price and invert it.

        Returns:
            USDT per 1 USD as Decimal (6 decimal places)

        Raises:
            RateFeedError: On timeout, HTTP error, invalid JSON or a missing/non-positive price
        """
        params = {"ids": "tether", "vs_currencies": "usd"}
        try:
            resp = requests.get(self.url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.Timeout:
            log.error("CoinGecko timeout after %s seconds", self.timeout)
            raise RateFeedError(f"CoinGecko timeout after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            log.error("CoinGecko request failed: %s", e)
            raise RateFeedError(f"CoinGecko request failed: {e}")
        except ValueError as e:
            log.error("CoinGecko returned invalid JSON: %s", e)
            raise RateFeedError(f"CoinGecko returned invalid JSON: {e}")

        price = (data.get("tether") or {}).get("usd") if isinstance(data, dict) else None
        if price is None:
            log.error("CoinGecko response missing tether.usd: %r", data)
            raise RateFeedError("CoinGecko response missing 'tether.usd' field")

        try:
            usd_per_usdt = Decimal(str(price))
        except (InvalidOperation, ValueError):
            raise RateFeedError(f"CoinGecko price is not numeric: {price!r}")

        if not usd_per_usdt.is_finite() or usd_per_usdt <= 0:
            raise RateFeedError(f"CoinGecko returned non-positive price: {usd_per_usdt}")

        rate = (Decimal("1") / usd_per_usdt).quantize(RATE_PRECISION)
        log.info("CoinGecko tether/usd=%s -> rate=%s", usd_per_usdt, rate)
        return rate
