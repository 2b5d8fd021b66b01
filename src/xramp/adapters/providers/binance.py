# src/xramp/adapters/providers/binance.py
"""
Binance Public Ticker Feed for the USD/USDT Market Rate

Reads the USDC/USDT spot price from Binance's public ticker endpoint. USDC is
used as the USD proxy, so the price is directly "USDT per 1 USD".

Files that USE this module:
- xramp.app (primary feed of the market rate chain)
- tests.test_rate_feeds (unit tests)

Files that this module USES:
- xramp.adapters.providers.base (RateFeed interface)
- xramp.config (settings for base URL and HTTP timeout)
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

TICKER_PATH = "/api/v3/ticker/price"
DEFAULT_SYMBOL = "USDCUSDT"


class BinanceRateFeed(RateFeed):
    """Binance spot ticker for a USD-pegged symbol quoted in USDT."""

    name = "binance"

    def __init__(
        self,
        base_url: Optional[str] = None,
        symbol: str = DEFAULT_SYMBOL,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.binance_base_url).rstrip("/")
        self.symbol = symbol
        self.timeout = timeout or settings.rate_feed_timeout_seconds

    def fetch_usd_rate(self) -> Decimal:
        """
        Fetch the current market rate.

        Returns:
            USDT per 1 USD as Decimal

        Raises:
            RateFeedError: On timeout, HTTP error, invalid JSON or a missing/non-positive price
        """
        url = f"{self.base_url}{TICKER_PATH}"
        try:
            resp = requests.get(url, params={"symbol": self.symbol}, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.Timeout:
            log.error("Binance ticker timeout after %s seconds", self.timeout)
            raise RateFeedError(f"Binance ticker timeout after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            log.error("Binance ticker request failed: %s", e)
            raise RateFeedError(f"Binance ticker request failed: {e}")
        except ValueError as e:
            log.error("Binance ticker returned invalid JSON: %s", e)
            raise RateFeedError(f"Binance ticker returned invalid JSON: {e}")

        if not isinstance(data, dict) or "price" not in data:
            log.error("Binance ticker unexpected response: %r", data)
            raise RateFeedError("Binance ticker response missing 'price' field")

        try:
            rate = Decimal(str(data["price"]))
        except (InvalidOperation, ValueError):
            raise RateFeedError(f"Binance ticker price is not numeric: {data['price']!r}")

        if not rate.is_finite() or rate <= 0:
            raise RateFeedError(f"Binance ticker returned non-positive price: {rate}")

        log.info("Binance %s price=%s", self.symbol, rate)
        return rate
