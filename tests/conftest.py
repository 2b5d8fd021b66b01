# tests/conftest.py
"""
Shared Test Fixtures - Fakes for the Engine's External Boundaries

Files that USE this module:
- pytest (fixtures are injected into tests by name)

Files that this module USES:
- xramp.adapters.persistence (InMemoryTransactionStore)
- xramp.adapters.transfer (TransferExecutor, SimulatedTransferExecutor)
- xramp.application.state_machine (TransactionStateMachine)
"""
from decimal import Decimal  # Exact amounts for fake transactions
from typing import Any, Dict, List, Optional  # Type hints

import pytest  # Testing framework for writing and running tests

from xramp.adapters.persistence import InMemoryTransactionStore  # In-memory transaction store
from xramp.adapters.transfer import SimulatedTransferExecutor, TransferExecutor  # Transfer executor base and simulator
from xramp.application.state_machine import TransactionStateMachine  # Lifecycle transitions
from xramp.domain.models import Network, PaymentProvider, Transaction, TransactionStatus, TransferResult  # Domain types

TRON_ADDRESS = "T" + "A" * 33
EVM_ADDRESS = "0x" + "a" * 40


class RecordingFanout:
    """Collects published events instead of delivering them."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    async def publish(self, subscriber_key: str, event: Dict[str, Any]) -> None:
        self.events.append(dict(event, subscriber=subscriber_key))

    def statuses(self) -> List[str]:
        return [e["status"] for e in self.events]


class FakeExecutor(TransferExecutor):
    """Transfer executor with scripted outcomes (results or exceptions, in order)."""

    def __init__(self, outcomes: Optional[list] = None):
        self.outcomes = list(outcomes or [])
        self.calls: List[tuple] = []

    def send(self, address, amount, network, reference=None) -> TransferResult:
        self.calls.append((address, amount, network, reference))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return TransferResult(tx_hash="0xfeed", status="pending", is_simulated=False, network=Network(network))


def make_tx(status: TransactionStatus = TransactionStatus.PENDING, **overrides) -> Transaction:
    fields = dict(
        user_id="user-1",
        amount_usd=Decimal("450"),
        usdt_amount=Decimal("405.00"),
        exchange_rate=Decimal("0.90"),
        fee_amount=Decimal("45.00"),
        fee_percentage=Decimal("10.00"),
        wallet_address=TRON_ADDRESS,
        network=Network.TRC20,
        provider=PaymentProvider.STRIPE,
        provider_payment_id="pi_123",
        status=status,
    )
    fields.update(overrides)
    return Transaction(**fields)


@pytest.fixture
def store():
    return InMemoryTransactionStore()


@pytest.fixture
def fanout():
    return RecordingFanout()


@pytest.fixture
def machine(store, fanout):
    return TransactionStateMachine(
        store,
        SimulatedTransferExecutor(),
        notifier=fanout,
        auto_complete_on_dispatch=True,
        transfer_timeout=5,
        transfer_max_attempts=3,
        retry_wait=0,
    )
