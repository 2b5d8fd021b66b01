# tests/test_state_machine.py
"""
State Machine Tests - Ordering, Terminal States, Dispatch and Concurrency

Files that USE this module:
- pytest (test runner executes these tests)

Files that this module USES:
- xramp.application.state_machine (TransactionStateMachine, can_transition, Evidence)
- tests.conftest (RecordingFanout, FakeExecutor, make_tx)
"""
import asyncio  # Run async transitions from synchronous tests
import threading  # Block the executor thread in concurrency tests
import time  # Measure how long a transition takes

import pytest  # Testing framework for writing and running tests

from xramp.application.state_machine import Evidence, TransactionStateMachine, can_transition  # Code under test
from xramp.domain.errors import (  # Expected exceptions
    AlreadyTerminalError,
    ImmutableFieldError,
    InsufficientBalanceError,
    InvalidTransitionError,
    TransactionNotFoundError,
    TransientNetworkError,
)
from xramp.domain.models import Network, TransactionStatus, TransferResult  # Domain models

from tests.conftest import FakeExecutor, RecordingFanout, make_tx  # Shared fakes and factories

S = TransactionStatus


def _machine(store, executor, fanout=None, **kwargs):
    kwargs.setdefault("auto_complete_on_dispatch", True)
    kwargs.setdefault("transfer_timeout", 5)
    kwargs.setdefault("transfer_max_attempts", 3)
    kwargs.setdefault("retry_wait", 0)
    return TransactionStateMachine(store, executor, notifier=fanout or RecordingFanout(), **kwargs)


class TestCanTransition:
    @pytest.mark.parametrize("current,target", [
        (S.INITIATED, S.PENDING),
        (S.INITIATED, S.PAYMENT_CONFIRMED),
        (S.PENDING, S.PAYMENT_PROCESSING),
        (S.PENDING, S.PAYMENT_CONFIRMED),
        (S.PAYMENT_PROCESSING, S.PAYMENT_CONFIRMED),
        (S.PAYMENT_CONFIRMED, S.CONVERTING_TO_USDT),
        (S.CONVERTING_TO_USDT, S.USDT_SENT),
        (S.USDT_SENT, S.COMPLETED),
        (S.PENDING, S.FAILED),
        (S.USDT_SENT, S.CANCELLED),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (S.PENDING, S.COMPLETED),
        (S.PENDING, S.CONVERTING_TO_USDT),
        (S.PAYMENT_CONFIRMED, S.USDT_SENT),
        (S.CONVERTING_TO_USDT, S.COMPLETED),
        (S.PAYMENT_CONFIRMED, S.PENDING),
        (S.PENDING, S.PENDING),
        (S.COMPLETED, S.FAILED),
        (S.FAILED, S.PENDING),
        (S.CANCELLED, S.CANCELLED),
    ])
    def test_rejected(self, current, target):
        assert not can_transition(current, target)


class TestTransition:
    def test_accepted_transition_saves_stamps_and_notifies(self, machine, store, fanout):
        tx = store.add(make_tx())
        result = asyncio.run(machine.transition(tx.id, S.PAYMENT_CONFIRMED, Evidence(card_last4="4242")))

        assert result.applied
        assert result.previous_status is S.PENDING
        saved = store.get(tx.id)
        assert saved.status is S.PAYMENT_CONFIRMED
        assert saved.payment_confirmed_at is not None
        assert saved.card_last4 == "4242"
        assert fanout.statuses() == ["payment_confirmed"]
        assert fanout.events[0]["previous_status"] == "pending"
        assert fanout.events[0]["subscriber"] == "user-1"

    def test_same_status_is_a_noop(self, machine, store, fanout):
        tx = store.add(make_tx())
        result = asyncio.run(machine.transition(tx.id, S.PENDING))
        assert not result.applied
        assert fanout.events == []

    def test_skipping_required_state_rejected(self, machine, store, fanout):
        tx = store.add(make_tx())
        with pytest.raises(InvalidTransitionError):
            asyncio.run(machine.transition(tx.id, S.COMPLETED))
        assert store.get(tx.id).status is S.PENDING
        assert fanout.events == []

    @pytest.mark.parametrize("terminal", [S.COMPLETED, S.FAILED, S.CANCELLED])
    @pytest.mark.parametrize("target", [S.PENDING, S.COMPLETED, S.FAILED, S.CANCELLED])
    def test_terminal_rejects_everything(self, machine, store, fanout, terminal, target):
        tx = store.add(make_tx(status=terminal))
        before = store.get(tx.id)
        with pytest.raises(AlreadyTerminalError):
            asyncio.run(machine.transition(tx.id, target))
        assert store.get(tx.id) == before
        assert fanout.events == []

    def test_unknown_transaction(self, machine):
        with pytest.raises(TransactionNotFoundError):
            asyncio.run(machine.transition("nope", S.FAILED))

    def test_fail_records_reason(self, machine, store):
        tx = store.add(make_tx())
        asyncio.run(machine.fail(tx.id, "Card declined"))
        saved = store.get(tx.id)
        assert saved.status is S.FAILED
        assert saved.error_message == "Card declined"

    def test_cancel_default_reason(self, machine, store):
        tx = store.add(make_tx())
        asyncio.run(machine.cancel(tx.id))
        assert store.get(tx.id).error_message == "Transaction cancelled"

    def test_transaction_hash_is_write_once(self, machine, store):
        tx = store.add(make_tx(status=S.CONVERTING_TO_USDT, transaction_hash="0xaaa"))
        with pytest.raises(ImmutableFieldError):
            asyncio.run(machine.transition(tx.id, S.USDT_SENT, Evidence(transaction_hash="0xbbb")))
        assert store.get(tx.id).status is S.CONVERTING_TO_USDT

    def test_notifier_failure_does_not_undo_transition(self, store):
        class Broken:
            async def publish(self, key, event):
                raise RuntimeError("push down")

        m = _machine(store, FakeExecutor(), fanout=Broken())
        tx = store.add(make_tx())
        result = asyncio.run(m.transition(tx.id, S.PAYMENT_CONFIRMED))
        assert result.applied
        assert store.get(tx.id).status is S.PAYMENT_CONFIRMED

    def test_event_id_recorded_in_the_transition_save(self, machine, store):
        tx = store.add(make_tx())
        asyncio.run(machine.transition(tx.id, S.PAYMENT_CONFIRMED, Evidence(event_id="evt_9")))
        saved = store.get(tx.id)
        assert saved.status is S.PAYMENT_CONFIRMED
        assert saved.processed_event_ids == ["evt_9"]

    def test_slow_notifier_runs_in_background(self, store):
        class Slow(RecordingFanout):
            async def publish(self, key, event):
                await asyncio.sleep(1)
                await super().publish(key, event)

        fanout = Slow()
        m = _machine(store, FakeExecutor(), fanout=fanout)
        tx = store.add(make_tx())

        async def run():
            started = time.monotonic()
            result = await m.transition(tx.id, S.PAYMENT_CONFIRMED)
            elapsed = time.monotonic() - started
            pending = list(fanout.events)
            await m.wait_idle()
            return result, elapsed, pending

        result, elapsed, pending = asyncio.run(run())
        assert result.applied
        assert elapsed < 0.5
        assert pending == []
        assert fanout.statuses() == ["payment_confirmed"]


class TestProcessConversion:
    def test_simulated_dispatch_completes(self, machine, store, fanout):
        tx = store.add(make_tx(status=S.PAYMENT_CONFIRMED))
        result = asyncio.run(machine.process_conversion(tx.id))

        assert result.new_status is S.COMPLETED
        saved = store.get(tx.id)
        assert saved.transaction_hash.startswith("SIMULATED_")
        assert saved.usdt_sent_at is not None and saved.completed_at is not None
        assert saved.metadata["is_real_transfer"] is False
        assert fanout.statuses() == ["converting_to_usdt", "usdt_sent", "completed"]

    def test_without_auto_complete_stops_at_usdt_sent(self, store):
        fanout = RecordingFanout()
        m = _machine(store, FakeExecutor(), fanout=fanout, auto_complete_on_dispatch=False)
        tx = store.add(make_tx(status=S.PAYMENT_CONFIRMED))

        result = asyncio.run(m.process_conversion(tx.id))
        assert result.new_status is S.USDT_SENT
        assert store.get(tx.id).transaction_hash == "0xfeed"

        asyncio.run(m.confirm_delivery(tx.id))
        assert store.get(tx.id).status is S.COMPLETED

    def test_reference_passed_to_executor(self, store):
        executor = FakeExecutor()
        m = _machine(store, executor)
        tx = store.add(make_tx(status=S.PAYMENT_CONFIRMED))
        asyncio.run(m.process_conversion(tx.id))
        address, amount, network, reference = executor.calls[0]
        assert (address, amount, network, reference) == (tx.wallet_address, tx.usdt_amount, Network.TRC20, tx.id)

    def test_transfer_error_fails_transaction(self, store):
        fanout = RecordingFanout()
        m = _machine(store, FakeExecutor([InsufficientBalanceError("Insufficient USDT balance")]), fanout=fanout)
        tx = store.add(make_tx(status=S.PAYMENT_CONFIRMED))

        result = asyncio.run(m.process_conversion(tx.id))
        assert result.new_status is S.FAILED
        assert store.get(tx.id).error_message == "Insufficient USDT balance"
        assert fanout.statuses() == ["converting_to_usdt", "failed"]

    def test_transient_errors_are_retried(self, store):
        ok = TransferResult(tx_hash="0xabc", status="pending", is_simulated=False, network=Network.TRC20)
        executor = FakeExecutor([TransientNetworkError("503"), TransientNetworkError("503"), ok])
        m = _machine(store, executor)
        tx = store.add(make_tx(status=S.PAYMENT_CONFIRMED))

        asyncio.run(m.process_conversion(tx.id))
        assert len(executor.calls) == 3
        assert store.get(tx.id).transaction_hash == "0xabc"

    def test_retries_are_bounded(self, store):
        executor = FakeExecutor([TransientNetworkError("503")] * 5)
        m = _machine(store, executor, transfer_max_attempts=2)
        tx = store.add(make_tx(status=S.PAYMENT_CONFIRMED))

        result = asyncio.run(m.process_conversion(tx.id))
        assert len(executor.calls) == 2
        assert result.new_status is S.FAILED

    def test_timeout_fails_without_retry(self, store):
        release = threading.Event()

        class Hanging(FakeExecutor):
            def send(self, address, amount, network, reference=None):
                self.calls.append(reference)
                release.wait(0.5)
                return TransferResult(tx_hash="0xlate", status="pending", is_simulated=False, network=network)

        executor = Hanging()
        m = _machine(store, executor, transfer_timeout=0.05)
        tx = store.add(make_tx(status=S.PAYMENT_CONFIRMED))
        try:
            result = asyncio.run(m.process_conversion(tx.id))
        finally:
            release.set()
        assert result.new_status is S.FAILED
        assert store.get(tx.id).error_message == "Transfer timed out after 0.05s"
        assert len(executor.calls) == 1

    def test_invalid_address_fails_before_dispatch(self, store):
        executor = FakeExecutor()
        m = _machine(store, executor)
        tx = store.add(make_tx(status=S.PAYMENT_CONFIRMED, wallet_address="0x" + "a" * 40))  # EVM address on TRC20
        result = asyncio.run(m.process_conversion(tx.id))
        assert result.new_status is S.FAILED
        assert executor.calls == []

    def test_second_call_does_not_dispatch_again(self, store):
        executor = FakeExecutor()
        m = _machine(store, executor, auto_complete_on_dispatch=False)
        tx = store.add(make_tx(status=S.CONVERTING_TO_USDT))
        result = asyncio.run(m.process_conversion(tx.id))
        assert not result.applied
        assert executor.calls == []

    def test_requires_confirmed_payment(self, machine, store):
        tx = store.add(make_tx(status=S.PENDING))
        with pytest.raises(InvalidTransitionError):
            asyncio.run(machine.process_conversion(tx.id))


class TestConcurrency:
    def test_racing_confirmations_apply_once(self, machine, store, fanout):
        tx = store.add(make_tx())

        async def race():
            return await asyncio.gather(
                *(machine.transition(tx.id, S.PAYMENT_CONFIRMED) for _ in range(10)),
                return_exceptions=True,
            )

        results = asyncio.run(race())
        assert sum(1 for r in results if r.applied) == 1
        assert fanout.statuses() == ["payment_confirmed"]

    def test_racing_conversions_dispatch_once(self, store):
        executor = FakeExecutor()
        fanout = RecordingFanout()
        m = _machine(store, executor, fanout=fanout)
        tx = store.add(make_tx(status=S.PAYMENT_CONFIRMED))

        async def race():
            return await asyncio.gather(*(m.process_conversion(tx.id) for _ in range(5)), return_exceptions=True)

        asyncio.run(race())
        assert len(executor.calls) == 1
        assert store.get(tx.id).status is S.COMPLETED

    def test_mixed_races_never_skip_required_states(self, store):
        fanout = RecordingFanout()
        m = _machine(store, FakeExecutor(), fanout=fanout)
        tx = store.add(make_tx())

        async def race():
            await asyncio.gather(
                m.transition(tx.id, S.COMPLETED),
                m.transition(tx.id, S.PAYMENT_PROCESSING),
                m.transition(tx.id, S.PAYMENT_CONFIRMED),
                m.transition(tx.id, S.USDT_SENT),
                m.transition(tx.id, S.PAYMENT_CONFIRMED),
                return_exceptions=True,
            )
            await m.process_conversion(tx.id)

        asyncio.run(race())
        seen = fanout.statuses()
        assert seen[-3:] == ["converting_to_usdt", "usdt_sent", "completed"]
        assert "payment_confirmed" in seen
        order = ["payment_processing", "payment_confirmed", "converting_to_usdt", "usdt_sent", "completed"]
        ranks = [order.index(s) for s in seen]
        assert ranks == sorted(ranks)

    def test_different_transactions_do_not_block_each_other(self, machine, store):
        a = store.add(make_tx(provider_payment_id="pi_a"))
        b = store.add(make_tx(provider_payment_id="pi_b"))

        async def both():
            async with machine.locks.hold(a.id):
                # b proceeds while a's lock is held
                return await asyncio.wait_for(machine.transition(b.id, S.FAILED), timeout=1)

        assert asyncio.run(both()).applied
