"""
Transfer Adapters - USDT Dispatch

Real (Binance) and simulated transfer executors, plus the factory that picks
one based on configuration.
"""
import logging

from xramp.adapters.transfer.base import TransferExecutor
from xramp.adapters.transfer.binance import BinanceTransferExecutor
from xramp.adapters.transfer.simulated import SimulatedTransferExecutor

log = logging.getLogger(__name__)


def build_transfer_executor(settings) -> TransferExecutor:
    """Binance when API keys are configured, simulated otherwise."""
    if settings.binance_configured:
        log.info("Binance API configured, USDT transfers are real")
        return BinanceTransferExecutor(
            api_key=settings.binance_api_key,
            api_secret=settings.binance_api_secret,
            base_url=settings.binance_base_url,
            timeout=settings.http_timeout_seconds,
        )
    log.warning("Binance API credentials not configured. USDT transfers will be simulated.")
    return SimulatedTransferExecutor()


__all__ = [
    "TransferExecutor",
    "BinanceTransferExecutor",
    "SimulatedTransferExecutor",
    "build_transfer_executor",
]
