# src/xramp/adapters/transfer/simulated.py
"""
Simulated Transfer Executor

Used when no exchange credentials are configured. Addresses are still
validated so that simulation fails the same way a real withdrawal would, and
the hash is derived deterministically from the request.

Files that USE this module:
- xramp.adapters.transfer (build_transfer_executor)
- tests.test_transfer, tests.test_state_machine

Files that this module USES:
- xramp.shared.validators (address format, explorer links)
"""
import hashlib
import logging
from decimal import Decimal
from typing import Optional

from xramp.adapters.transfer.base import TransferExecutor
from xramp.domain.errors import InvalidAddressError
from xramp.domain.models import Network, TransferResult
from xramp.shared.validators import explorer_url, validate_wallet_address

log = logging.getLogger(__name__)


class SimulatedTransferExecutor(TransferExecutor):
    is_simulated = True

    def __init__(self, salt: str = "xramp-simulation"):
        self.salt = salt

    def send(self, address: str, amount: Decimal, network: Network,
             reference: Optional[str] = None) -> TransferResult:
        """
        Pretend to withdraw and return a deterministic fake hash.

        Raises:
            InvalidAddressError: If the address does not match the network's format
        """
        validation = validate_wallet_address(address, network)
        if not validation.valid:
            raise InvalidAddressError(validation.error)

        net = validation.network
        digest = hashlib.sha256(
            f"{validation.normalized_address}|{amount}|{net.value}|{self.salt}".encode("utf-8")
        ).hexdigest()
        tx_hash = f"SIMULATED_{digest[:32]}"
        log.info("SIMULATION MODE: %s USDT to %s via %s -> %s",
                 amount, validation.normalized_address, net.value, tx_hash)
        return TransferResult(
            tx_hash=tx_hash,
            status="completed",
            is_simulated=True,
            network=net,
            explorer_url=explorer_url(tx_hash, net),
        )
