# src/xramp/application/reconciler.py
"""
Webhook Reconciler - Idempotent Application of Provider Events

Turns verified provider webhooks into state machine transitions:
1. verify the signature (before any lookup)
2. normalize the provider payload into a WebhookEvent
3. resolve the transaction (provider payment id or our id, falling back to the other)
4. drop events whose id was already processed
5. map the event kind to a target status and apply it
6. record the event id in the same save as the transition it caused

An applied transition stores the event id together with the new status, so a
crash can never leave a status change without its event id. Outcomes that
change nothing (already terminal, invalid transition, same status) record the
id on its own, so redeliveries of those are answered as duplicates. Any other
failure leaves the id unrecorded and the provider's redelivery retries the
event. A card success whose transaction is still payment_confirmed starts the
conversion again, including on a redelivery.

Files that USE this module:
- xramp.app (builds the reconciler)
- tests.test_reconciler (unit tests)

Files that this module USES:
- xramp.application.state_machine (TransactionStateMachine, Evidence)
- xramp.adapters.payments (PaymentCapture, verify_onramp_signature)
- xramp.domain.events (WebhookEvent, OnRampEvent, EventKind, RefKind)
"""
from __future__ import annotations  # Enable postponed evaluation of annotations

import asyncio  # Background conversion tasks
import json  # Unsigned on-ramp bodies
import logging  # Standard library for logging messages and errors
from dataclasses import dataclass  # Result containers
from enum import Enum  # Reconcile outcomes
from typing import Any, Dict, List, Optional, Set, Union  # Type hints

from xramp.adapters.payments.base import PaymentCapture  # Card provider boundary (signature checks)
from xramp.adapters.payments.onramp import verify_onramp_signature  # On-ramp HMAC verification
from xramp.application.state_machine import Evidence, TransactionStateMachine  # Lifecycle transitions
from xramp.config import settings  # Application configuration and settings
from xramp.domain.errors import (  # Domain exceptions
    AlreadyTerminalError,
    InvalidTransitionError,
    SignatureError,
    TransactionNotFoundError,
)
from xramp.domain.events import EventKind, OnRampEvent, RefKind, WebhookEvent  # Normalized webhook events
from xramp.domain.models import PaymentProvider, Transaction, TransactionStatus, TransitionResult  # Domain models
from xramp.shared.keyed_lock import KeyedLock  # Per-transaction event serialization

logger = logging.getLogger(__name__)

S = TransactionStatus

# Statuses an on-ramp order passes through once the provider delivered the funds
ONRAMP_DELIVERY_PATH = (S.PAYMENT_CONFIRMED, S.CONVERTING_TO_USDT, S.USDT_SENT, S.COMPLETED)

SIMPLE_TARGETS = {
    EventKind.CREATED: S.PENDING,
    EventKind.PROGRESS: S.PAYMENT_PROCESSING,
    EventKind.FAILURE: S.FAILED,
    EventKind.CANCEL: S.CANCELLED,
}


class ReconcileStatus(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    ALREADY_TERMINAL = "already_terminal"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ReconcileResult:
    status: ReconcileStatus
    transaction_id: Optional[str]
    new_status: Optional[TransactionStatus] = None


@dataclass(frozen=True)
class WebhookResponse:
    """Provider-facing answer to a webhook delivery."""
    status_code: int
    body: Dict[str, Any]

    @classmethod
    def from_result(cls, result: ReconcileResult) -> "WebhookResponse":
        body: Dict[str, Any] = {"received": True, "result": result.status.value}
        if result.transaction_id:
            body["transaction_id"] = result.transaction_id
        return cls(200, body)

    @classmethod
    def from_error(cls, error: Exception) -> "WebhookResponse":
        """
        Map a reconciliation failure to a response.

        Signature failures get a generic 400. Unknown transactions are
        acknowledged with 200 so the provider stops redelivering an event that
        can never apply. Anything else is 500, which makes the provider redeliver.
        """
        if isinstance(error, SignatureError):
            return cls(400, {"received": False, "error": "Webhook verification failed"})
        if isinstance(error, TransactionNotFoundError):
            return cls(200, {"received": True, "result": "not_found"})
        return cls(500, {"received": False, "error": "Internal error"})


class WebhookReconciler:
    """Applies provider webhooks to transactions at most once per event id."""

    def __init__(
        self,
        machine: TransactionStateMachine,
        capture: Optional[PaymentCapture] = None,
        onramp_secret: Optional[str] = None,
        dispatch_in_background: bool = True,
    ):
        """
        Args:
            machine: State machine (its store and locks are shared)
            capture: Card provider boundary, used for signature verification
            onramp_secret: On-ramp webhook secret (defaults to settings; empty disables verification)
            dispatch_in_background: Run the transfer after a card success as a task
                instead of awaiting it inside the webhook call
        """
        self.machine = machine
        self.store = machine.store
        self.capture = capture
        self.onramp_secret = settings.transak_webhook_secret if onramp_secret is None else onramp_secret
        self.dispatch_in_background = dispatch_in_background
        # Serializes check → apply → record per transaction
        self._event_locks = KeyedLock()
        self._tasks: Set[asyncio.Task] = set()

    # ---- provider entry points ----

    async def handle_stripe(self, payload: bytes, signature: str) -> ReconcileResult:
        """
        Verify and reconcile a card provider webhook.

        Raises:
            SignatureError: If the signature is invalid (no state is touched)
            TransactionNotFoundError: If a payment event references an unknown intent
        """
        if self.capture is None:
            raise SignatureError("Card provider not configured")
        event = self.capture.verify_webhook_signature(payload, signature)
        logger.info("Card webhook received: id=%s type=%s", event.event_id, event.event_type)
        return await self.reconcile(event.normalize())

    async def handle_onramp(self, body: Union[bytes, str, Dict[str, Any]],
                            signature: Optional[str] = None) -> ReconcileResult:
        """
        Verify (when a secret is configured) and reconcile an on-ramp webhook.

        Raises:
            SignatureError: On a bad signature, or a pre-parsed body when verification is on
            TransactionNotFoundError: If partnerOrderId is unknown
        """
        if self.onramp_secret:
            if isinstance(body, dict):
                raise SignatureError("Raw body required for signature verification")
            data = verify_onramp_signature(body, signature, self.onramp_secret)
        elif isinstance(body, dict):
            data = body
        else:
            try:
                data = json.loads(body)
            except ValueError as e:
                raise SignatureError("Invalid payload") from e

        event = OnRampEvent.from_payload(data)
        logger.info("On-ramp webhook received: event=%s order=%s",
                    event.event_name, event.data.get("partnerOrderId"))
        return await self.reconcile(event.normalize())

    # ---- core ----

    def _resolve(self, event: WebhookEvent) -> Optional[Transaction]:
        ref = event.transaction_ref
        if not ref:
            return None
        if event.ref_kind is RefKind.PROVIDER_PAYMENT_ID:
            return self.store.get_by_provider_payment_id(ref) or self.store.get(ref)
        return self.store.get(ref) or self.store.get_by_provider_payment_id(ref)

    async def _record(self, transaction_id: str, event_id: str) -> None:
        async with self.machine.locks.hold(transaction_id):
            tx = self.store.get(transaction_id)
            if tx is None or tx.has_processed(event_id):
                return
            tx.mark_processed(event_id)
            self.store.save(tx)

    def _evidence(self, event: WebhookEvent, target: TransactionStatus) -> Evidence:
        metadata: Dict[str, Any] = {}
        if event.provider is PaymentProvider.TRANSAK:
            metadata["onramp_status"] = event.payload.get("status")
        if target in (S.FAILED, S.CANCELLED):
            return Evidence(error_message=event.error_message, metadata=metadata,
                            event_id=event.provider_event_id)
        return Evidence(provider_order_id=event.provider_order_id, metadata=metadata,
                        event_id=event.provider_event_id)

    async def _walk_onramp_delivery(self, tx: Transaction, event: WebhookEvent) -> TransitionResult:
        """Walk the required statuses up to completed, each as its own transition."""
        order = list(ONRAMP_DELIVERY_PATH)
        remaining: List[TransactionStatus] = [
            s for s in order if tx.status not in order or order.index(s) > order.index(tx.status)
        ]
        if not remaining:
            # Already completed; let the state machine report the terminal state
            remaining = [S.COMPLETED]
        result = None
        for target in remaining:
            # The event counts as processed with the final step only
            event_id = event.provider_event_id if target is remaining[-1] else None
            evidence = Evidence(provider_order_id=event.provider_order_id, event_id=event_id)
            if target is S.PAYMENT_CONFIRMED:
                evidence = Evidence(
                    provider_order_id=event.provider_order_id,
                    crypto_amount=event.crypto_amount,
                    event_id=event_id,
                )
            elif target is S.USDT_SENT:
                evidence = Evidence(
                    transaction_hash=event.transaction_hash,
                    crypto_amount=event.crypto_amount,
                    metadata={"is_real_transfer": True, "onramp_order_id": event.provider_order_id},
                    event_id=event_id,
                )
            result = await self.machine.transition(tx.id, target, evidence)
        return result

    async def _apply(self, tx: Transaction, event: WebhookEvent) -> Optional[TransitionResult]:
        """Apply the event's transition. Returns None when the event kind maps to no status."""
        if event.kind is EventKind.SUCCESS:
            if event.provider is PaymentProvider.TRANSAK:
                return await self._walk_onramp_delivery(tx, event)
            return await self.machine.transition(tx.id, S.PAYMENT_CONFIRMED, Evidence(
                card_last4=event.card_last4,
                card_brand=event.card_brand,
                event_id=event.provider_event_id,
            ))

        target = SIMPLE_TARGETS.get(event.kind)
        if target is None:
            return None
        return await self.machine.transition(tx.id, target, self._evidence(event, target))

    async def reconcile(self, event: WebhookEvent) -> ReconcileResult:
        """
        Apply a normalized event at most once.

        A card success that leaves the transaction in payment_confirmed, as a
        first delivery or as a redelivery after the transfer never started,
        starts the conversion.

        Returns:
            ReconcileResult (applied, duplicate, already_terminal or ignored)

        Raises:
            TransactionNotFoundError: If the event references no known transaction
            Any other error from the state machine or store (event id not recorded)
        """
        tx = self._resolve(event)
        if tx is None:
            if event.kind is EventKind.UNKNOWN:
                logger.info("Unhandled %s event %s ignored", event.provider.value, event.provider_event_id)
                return ReconcileResult(ReconcileStatus.IGNORED, None)
            logger.warning("Webhook %s references unknown transaction %r",
                           event.provider_event_id, event.transaction_ref)
            raise TransactionNotFoundError(f"Transaction not found for reference {event.transaction_ref!r}")

        async with self._event_locks.hold(tx.id):
            outcome = await self._reconcile_once(self.store.get(tx.id) or tx, event)

        if (event.kind is EventKind.SUCCESS
                and event.provider is PaymentProvider.STRIPE
                and outcome.new_status is S.PAYMENT_CONFIRMED):
            if outcome.status is not ReconcileStatus.APPLIED:
                logger.warning("Transaction %s still payment_confirmed, resuming conversion", tx.id)
            await self._start_conversion(tx.id)
        return outcome

    async def _reconcile_once(self, tx: Transaction, event: WebhookEvent) -> ReconcileResult:
        """Check, apply and record one event; caller holds the event lock."""
        event_id = event.provider_event_id
        if tx.has_processed(event_id):
            logger.warning("Duplicate webhook %s for transaction %s ignored", event_id, tx.id)
            return ReconcileResult(ReconcileStatus.DUPLICATE, tx.id, tx.status)

        try:
            result = await self._apply(tx, event)
        except AlreadyTerminalError as e:
            logger.warning("Webhook %s for terminal transaction %s (%s)", event_id, tx.id, e.status)
            await self._record(tx.id, event_id)
            return ReconcileResult(ReconcileStatus.ALREADY_TERMINAL, tx.id, TransactionStatus(e.status))
        except InvalidTransitionError as e:
            logger.warning("Stale webhook %s for %s: %s → %s", event_id, tx.id, e.current, e.target)
            await self._record(tx.id, event_id)
            return ReconcileResult(ReconcileStatus.IGNORED, tx.id, TransactionStatus(e.current))

        if result is None or not result.applied:
            logger.info("Webhook %s (%s) changed nothing, recorded only", event_id, event.kind.value)
            await self._record(tx.id, event_id)
            return ReconcileResult(ReconcileStatus.IGNORED, tx.id, result.new_status if result else tx.status)

        # The applied transition saved the event id with the new status
        return ReconcileResult(ReconcileStatus.APPLIED, tx.id, result.new_status)

    # ---- transfer dispatch after card success ----

    async def _run_conversion(self, transaction_id: str) -> None:
        try:
            await self.machine.process_conversion(transaction_id)
        except (AlreadyTerminalError, InvalidTransitionError) as e:
            logger.warning("Conversion for %s not started: %s", transaction_id, e)

    async def _start_conversion(self, transaction_id: str) -> None:
        if not self.dispatch_in_background:
            await self._run_conversion(transaction_id)
            return
        task = asyncio.create_task(self._run_conversion(transaction_id))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Conversion task failed: %s", task.exception(), exc_info=task.exception())

    async def wait_idle(self) -> None:
        """Wait for background conversions started by webhooks (shutdown, tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.machine.wait_idle()
