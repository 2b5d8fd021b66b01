# src/xramp/adapters/transfer/base.py
"""
Base Transfer Executor Interface

Files that USE this module:
- xramp.adapters.transfer.simulated (SimulatedTransferExecutor)
- xramp.adapters.transfer.binance (BinanceTransferExecutor)
- xramp.application.state_machine (dispatches transfers through it)

Files that this module USES:
- xramp.domain.models (Network, TransferResult)
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from xramp.domain.models import Network, TransferResult


class TransferExecutor(ABC):
    """
    Dispatches a stablecoin withdrawal to a user wallet.

    send() is blocking; the state machine runs it in an executor with a timeout.
    Failures are raised as TransferError subclasses from xramp.domain.errors.
    """

    is_simulated: bool = False

    @abstractmethod
    def send(self, address: str, amount: Decimal, network: Network,
             reference: Optional[str] = None) -> TransferResult:
        raise NotImplementedError
