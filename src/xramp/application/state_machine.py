# src/xramp/application/state_machine.py
"""
Transaction State Machine - Lifecycle Transitions and Transfer Dispatch

This module owns every status change of a Transaction. It enforces the
lifecycle ordering, stamps timestamps, persists each accepted transition with a
single store write and publishes exactly one notification per accepted
transition. Notifications are delivered in background tasks; wait_idle()
drains them.

Lifecycle:
    initiated → pending → payment_processing → payment_confirmed
        → converting_to_usdt → usdt_sent → completed
    failed / cancelled from any non-terminal status

pending and payment_processing may be skipped (providers can confirm a payment
without reporting progress first). payment_confirmed, converting_to_usdt and
usdt_sent can never be skipped.

Transitions on one transaction are serialized by a per-transaction asyncio
lock. The lock is held for one load-check-apply-save step only; the transfer
dispatch in process_conversion runs with no lock held.

Files that USE this module:
- xramp.application.reconciler (applies webhook-driven transitions)
- xramp.application.payment_service (synchronous confirmation path)
- xramp.app (wires store, executor and notifier)
- tests.test_state_machine (unit and concurrency tests)

Files that this module USES:
- xramp.adapters.persistence (TransactionStore protocol)
- xramp.adapters.transfer.base (TransferExecutor)
- xramp.adapters.notifications (NotificationFanout protocol)
- xramp.shared.keyed_lock (KeyedLock)
- xramp.shared.validators (re-validation of the wallet before dispatch)
- tenacity (bounded retries of transient transfer failures)
"""
from __future__ import annotations  # Enable postponed evaluation of annotations

import asyncio  # Locks, executor offloading and dispatch timeout
import logging  # Standard library for logging messages and errors
from dataclasses import dataclass, field  # Transition evidence container
from decimal import Decimal  # Crypto amounts reported by providers
from typing import Any, Dict, Optional, Set  # Type hints

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential  # Transfer retries

from xramp.adapters.notifications.fanout import LoggingFanout, NotificationFanout  # Status update delivery
from xramp.adapters.persistence.transaction_store import TransactionStore  # Transaction persistence protocol
from xramp.adapters.transfer.base import TransferExecutor  # Stablecoin transfer boundary
from xramp.config import settings  # Application configuration and settings
from xramp.domain.errors import (  # Domain exceptions
    AlreadyTerminalError,
    InvalidTransitionError,
    StateError,
    TransactionNotFoundError,
    TransferError,
    TransientNetworkError,
)
from xramp.domain.models import (  # Domain models
    Transaction,
    TransactionStatus,
    TransferResult,
    TransitionResult,
    utcnow,
)
from xramp.shared.keyed_lock import KeyedLock  # Per-transaction locks
from xramp.shared.validators import validate_wallet_address  # Wallet re-validation before dispatch

logger = logging.getLogger(__name__)

S = TransactionStatus

LIFECYCLE = (
    S.INITIATED,
    S.PENDING,
    S.PAYMENT_PROCESSING,
    S.PAYMENT_CONFIRMED,
    S.CONVERTING_TO_USDT,
    S.USDT_SENT,
    S.COMPLETED,
)
RANK = {status: i for i, status in enumerate(LIFECYCLE)}

# States a forward transition may jump over
OPTIONAL_STATES = frozenset({S.PENDING, S.PAYMENT_PROCESSING})

ABSORBING_STATES = frozenset({S.FAILED, S.CANCELLED})

TIMESTAMP_FIELDS = {
    S.PAYMENT_CONFIRMED: "payment_confirmed_at",
    S.USDT_SENT: "usdt_sent_at",
    S.COMPLETED: "completed_at",
}


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    """
    Check whether target is reachable from current in one step.

    Same-status requests are not transitions and return False.
    """
    if current.is_terminal or current == target:
        return False
    if target in ABSORBING_STATES:
        return True
    if target not in RANK or current not in RANK:
        return False
    lo, hi = RANK[current], RANK[target]
    if hi <= lo:
        return False
    return all(s in OPTIONAL_STATES for s in LIFECYCLE[lo + 1:hi])


@dataclass(frozen=True)
class Evidence:
    """
    Data accompanying a transition request.

    Attributes:
        error_message: Failure or cancellation reason
        transaction_hash: Dispatch hash (write-once on the transaction)
        crypto_amount: USDT amount reported by an on-ramp provider
        provider_order_id: Provider-side order id, stored as provider_payment_id when unset
        card_last4: Card details from the card provider
        card_brand: Card details from the card provider
        metadata: Extra keys merged into the transaction metadata
        event_id: Provider event id recorded as processed in the same save
    """
    error_message: Optional[str] = None
    transaction_hash: Optional[str] = None
    crypto_amount: Optional[Decimal] = None
    provider_order_id: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    event_id: Optional[str] = None


NO_EVIDENCE = Evidence()


class TransactionStateMachine:
    """Applies lifecycle transitions to stored transactions."""

    def __init__(
        self,
        store: TransactionStore,
        executor: TransferExecutor,
        notifier: Optional[NotificationFanout] = None,
        auto_complete_on_dispatch: Optional[bool] = None,
        transfer_timeout: Optional[float] = None,
        transfer_max_attempts: Optional[int] = None,
        retry_wait: float = 1.0,
        locks: Optional[KeyedLock] = None,
    ):
        """
        Initialize the state machine.

        Args:
            store: Transaction persistence
            executor: Stablecoin transfer boundary
            notifier: Status update fanout (defaults to LoggingFanout)
            auto_complete_on_dispatch: Advance usdt_sent → completed right after dispatch
            transfer_timeout: Upper bound in seconds for one dispatch attempt
            transfer_max_attempts: Attempts for transient transfer failures
            retry_wait: Exponential backoff multiplier in seconds (0 disables waiting)
            locks: Per-transaction locks (shared with the reconciler)
        """
        self.store = store
        self.executor = executor
        self.notifier = notifier or LoggingFanout()
        self.auto_complete_on_dispatch = (
            settings.auto_complete_on_dispatch if auto_complete_on_dispatch is None else auto_complete_on_dispatch
        )
        self.transfer_timeout = transfer_timeout or settings.transfer_timeout_seconds
        self.transfer_max_attempts = transfer_max_attempts or settings.transfer_max_attempts
        self.retry_wait = retry_wait
        self.locks = locks or KeyedLock()
        self._notifications: Set[asyncio.Task] = set()

    # ---- single transitions ----

    def _load(self, transaction_id: str) -> Transaction:
        tx = self.store.get(transaction_id)
        if tx is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return tx

    @staticmethod
    def _apply_evidence(tx: Transaction, target: TransactionStatus, evidence: Evidence) -> None:
        if evidence.transaction_hash:
            tx.assign_transaction_hash(evidence.transaction_hash)
        if evidence.crypto_amount is not None and evidence.crypto_amount.is_finite() and evidence.crypto_amount > 0:
            tx.usdt_amount = evidence.crypto_amount
        if evidence.provider_order_id and not tx.provider_payment_id:
            tx.provider_payment_id = evidence.provider_order_id
        if evidence.card_last4:
            tx.card_last4 = evidence.card_last4
        if evidence.card_brand:
            tx.card_brand = evidence.card_brand
        if target in ABSORBING_STATES:
            tx.error_message = evidence.error_message or (
                "Transaction cancelled" if target is S.CANCELLED else "Transaction failed"
            )
        elif evidence.error_message:
            tx.error_message = evidence.error_message
        if evidence.metadata:
            tx.metadata.update(evidence.metadata)
        if evidence.event_id:
            tx.mark_processed(evidence.event_id)

    def _apply(self, transaction_id: str, target: TransactionStatus, evidence: Evidence) -> TransitionResult:
        """Load-check-apply-save; caller holds the transaction lock."""
        tx = self._load(transaction_id)
        previous = tx.status

        if tx.is_terminal:
            logger.warning("Transition %s → %s rejected: transaction %s is terminal",
                           previous.value, target.value, transaction_id)
            raise AlreadyTerminalError(transaction_id, previous.value)

        if target == previous:
            logger.info("Transaction %s already %s, nothing to apply", transaction_id, target.value)
            return TransitionResult(tx, previous, target, applied=False, reason="already in status")

        if not can_transition(previous, target):
            logger.warning("Invalid transition for %s: %s → %s", transaction_id, previous.value, target.value)
            raise InvalidTransitionError(transaction_id, previous.value, target.value)

        self._apply_evidence(tx, target, evidence)
        now = utcnow()
        tx.status = target
        stamp = TIMESTAMP_FIELDS.get(target)
        if stamp:
            setattr(tx, stamp, now)
        tx.updated_at = now
        saved = self.store.save(tx)

        logger.info("Transaction %s: %s → %s", transaction_id, previous.value, target.value)
        return TransitionResult(saved, previous, target, applied=True)

    async def _publish(self, result: TransitionResult) -> None:
        tx = result.transaction
        event = tx.to_public_dict()
        event["previous_status"] = result.previous_status.value
        try:
            await self.notifier.publish(tx.user_id, event)
        except Exception as e:
            logger.warning("Notification for %s (%s) failed: %s", tx.id, tx.status.value, e)

    async def transition(
        self,
        transaction_id: str,
        target: TransactionStatus,
        evidence: Optional[Evidence] = None,
    ) -> TransitionResult:
        """
        Move a transaction to target.

        Args:
            transaction_id: Transaction to change
            target: Requested status
            evidence: Optional data recorded with the transition

        Returns:
            TransitionResult; applied is False when the transaction already had target

        Raises:
            TransactionNotFoundError: If the id is unknown
            AlreadyTerminalError: If the transaction is completed, failed or cancelled
            InvalidTransitionError: If target is not reachable from the current status
            ImmutableFieldError: If evidence carries a different hash than the recorded one
        """
        target = TransactionStatus(target)
        async with self.locks.hold(transaction_id):
            result = self._apply(transaction_id, target, evidence or NO_EVIDENCE)
        if result.applied:
            self._schedule_publish(result)
            # Let the notification start; targets that do not block finish here
            await asyncio.sleep(0)
        return result

    def _schedule_publish(self, result: TransitionResult) -> None:
        """Deliver the notification in the background so a slow target never delays the caller."""
        task = asyncio.create_task(self._publish(result))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def wait_idle(self) -> None:
        """Wait for notifications that are still being delivered."""
        while self._notifications:
            await asyncio.gather(*list(self._notifications))

    async def fail(self, transaction_id: str, reason: str) -> TransitionResult:
        return await self.transition(transaction_id, S.FAILED, Evidence(error_message=reason))

    async def cancel(self, transaction_id: str, reason: str = "Transaction cancelled") -> TransitionResult:
        return await self.transition(transaction_id, S.CANCELLED, Evidence(error_message=reason))

    async def confirm_delivery(self, transaction_id: str) -> TransitionResult:
        """
        Mark dispatched funds as received (usdt_sent → completed).

        Used when auto_complete_on_dispatch is off.
        """
        return await self.transition(transaction_id, S.COMPLETED)

    # ---- transfer dispatch ----

    async def _dispatch(self, tx: Transaction) -> TransferResult:
        """
        Send the USDT with a per-attempt timeout and bounded retries.

        Only TransientNetworkError is retried. A timeout is not retried since
        the withdrawal may already be in flight.
        """
        loop = asyncio.get_running_loop()
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(TransientNetworkError),
            stop=stop_after_attempt(self.transfer_max_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=10),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning("Retrying transfer for %s (attempt %d/%d)",
                                   tx.id, attempt.retry_state.attempt_number, self.transfer_max_attempts)
                result = await asyncio.wait_for(
                    loop.run_in_executor(
                        None, self.executor.send, tx.wallet_address, tx.usdt_amount, tx.network, tx.id
                    ),
                    timeout=self.transfer_timeout,
                )
        return result

    async def _apply_after_dispatch(self, transaction_id: str, target: TransactionStatus,
                                    evidence: Evidence) -> TransitionResult:
        """Apply the dispatch outcome; a transaction closed meanwhile is reported, not raised."""
        try:
            return await self.transition(transaction_id, target, evidence)
        except StateError as e:
            logger.error("Dispatch outcome %s for %s could not be applied: %s (hash=%s)",
                         target.value, transaction_id, e, evidence.transaction_hash)
            tx = self._load(transaction_id)
            return TransitionResult(tx, tx.status, tx.status, applied=False, reason=str(e))

    async def process_conversion(self, transaction_id: str) -> TransitionResult:
        """
        Move a confirmed payment to converting_to_usdt, dispatch the USDT and
        apply the outcome (usdt_sent, then completed when auto-complete is on,
        or failed).

        Returns:
            The last transition result. If the transaction was already
            converting, nothing is dispatched and the no-op result is returned.

        Raises:
            TransactionNotFoundError, AlreadyTerminalError, InvalidTransitionError:
                If the transaction cannot enter converting_to_usdt
        """
        started = await self.transition(transaction_id, S.CONVERTING_TO_USDT)
        if not started.applied:
            logger.warning("Transaction %s is already converting, dispatch skipped", transaction_id)
            return started
        tx = started.transaction

        validation = validate_wallet_address(tx.wallet_address, tx.network)
        if not validation.valid:
            logger.error("Transaction %s has an invalid wallet address: %s", transaction_id, validation.error)
            return await self._apply_after_dispatch(
                transaction_id, S.FAILED, Evidence(error_message=validation.error)
            )

        try:
            transfer = await self._dispatch(tx)
        except asyncio.TimeoutError:
            reason = f"Transfer timed out after {self.transfer_timeout}s"
            logger.error("Transaction %s: %s", transaction_id, reason)
            return await self._apply_after_dispatch(transaction_id, S.FAILED, Evidence(error_message=reason))
        except TransferError as e:
            logger.error("Transaction %s: USDT transfer failed: %s", transaction_id, e)
            return await self._apply_after_dispatch(transaction_id, S.FAILED, Evidence(error_message=str(e)))

        sent = await self._apply_after_dispatch(transaction_id, S.USDT_SENT, Evidence(
            transaction_hash=transfer.tx_hash,
            metadata={
                "is_real_transfer": not transfer.is_simulated,
                "explorer_url": transfer.explorer_url,
                "transfer_status": transfer.status,
            },
        ))
        if sent.applied and self.auto_complete_on_dispatch:
            return await self._apply_after_dispatch(transaction_id, S.COMPLETED, NO_EVIDENCE)
        return sent
