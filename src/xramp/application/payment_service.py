# src/xramp/application/payment_service.py
"""
Payment Service - Order Creation, Synchronous Confirmation and Queries

Use cases behind the (external) HTTP surface:
- create_card_payment: quote + card PaymentIntent + pending transaction
- create_onramp_order: estimate + initiated transaction for the on-ramp widget
- confirm_payment: synchronous confirmation after the client completed the card flow
- get_transaction / list_transactions: owner-scoped queries with paging

Files that USE this module:
- xramp.app (engine wiring)
- tests.test_payment_service (unit tests)

Files that this module USES:
- xramp.application.conversion (ConversionCalculator)
- xramp.application.state_machine (TransactionStateMachine, Evidence)
- xramp.adapters.payments.base (PaymentCapture)
- xramp.shared.validators (wallet address validation)
"""
from __future__ import annotations  # Enable postponed evaluation of annotations

import asyncio  # Offload blocking provider calls
import logging  # Standard library for logging messages and errors
import math  # Page count rounding
from dataclasses import dataclass  # Page container
from datetime import datetime  # Date range filters
from decimal import Decimal  # Exact money arithmetic
from typing import Any, List, NamedTuple, Optional  # Type hints

from xramp.adapters.payments.base import PaymentCapture  # Card provider boundary
from xramp.application.conversion import ConversionCalculator, calculator as default_calculator  # Tier pricing
from xramp.application.state_machine import Evidence, TransactionStateMachine  # Lifecycle transitions
from xramp.config import settings  # Application configuration and settings
from xramp.domain.errors import (  # Domain exceptions
    AlreadyTerminalError,
    InvalidAddressError,
    InvalidTransitionError,
    OutOfRangeError,
    PaymentCaptureError,
    TransactionNotFoundError,
)
from xramp.domain.models import (  # Domain models
    ConversionQuote,
    PaymentProvider,
    Transaction,
    TransactionStatus,
    TransitionResult,
    to_decimal,
    truncate_cents,
)
from xramp.shared.validators import validate_wallet_address  # Wallet address checks

logger = logging.getLogger(__name__)


class CardPayment(NamedTuple):
    transaction: Transaction
    quote: ConversionQuote
    client_secret: Optional[str]


@dataclass(frozen=True)
class Page:
    """One page of a transaction listing (page numbers start at 1)."""
    items: List[Transaction]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class PaymentService:
    """Creates orders and confirms card payments; queries transactions."""

    def __init__(
        self,
        machine: TransactionStateMachine,
        capture: Optional[PaymentCapture] = None,
        calculator: Optional[ConversionCalculator] = None,
        onramp_min_usd: Any = None,
        onramp_fee_estimate: Any = None,
        capture_timeout: Optional[float] = None,
    ):
        self.machine = machine
        self.store = machine.store
        self.capture = capture
        self.calculator = calculator or default_calculator
        self.onramp_min_usd = to_decimal(onramp_min_usd if onramp_min_usd is not None else settings.onramp_min_usd)
        self.onramp_fee_estimate = to_decimal(
            onramp_fee_estimate if onramp_fee_estimate is not None else settings.onramp_fee_estimate
        )
        self.capture_timeout = capture_timeout or float(settings.http_timeout_seconds * 3)

    def _require_capture(self) -> PaymentCapture:
        if self.capture is None:
            raise PaymentCaptureError("Card payments are not configured")
        return self.capture

    async def _call_capture(self, fn, *args):
        """Run a blocking capture call with a bounded timeout."""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(loop.run_in_executor(None, fn, *args), timeout=self.capture_timeout)
        except asyncio.TimeoutError:
            raise PaymentCaptureError(f"Payment provider timed out after {self.capture_timeout}s")

    @staticmethod
    def _validated_address(wallet_address: Any, network: Any):
        validation = validate_wallet_address(wallet_address, network)
        if not validation.valid:
            raise InvalidAddressError(validation.error)
        return validation

    async def create_card_payment(
        self,
        user_id: str,
        usd_amount: Any,
        wallet_address: str,
        network: Any = None,
        currency: str = "USD",
    ) -> CardPayment:
        """
        Quote the amount, open a card PaymentIntent and store a pending transaction.

        Returns:
            CardPayment(transaction, quote, client_secret)

        Raises:
            InvalidAddressError: If the wallet address does not match the network
            InvalidAmountError / OutOfRangeError: If the amount is rejected
            PaymentCaptureError: If the card provider fails or is not configured
        """
        validation = self._validated_address(wallet_address, network or settings.default_network)
        quote = self.calculator.calculate_conversion(usd_amount)
        capture = self._require_capture()

        intent = await self._call_capture(capture.create_intent, quote.usd_amount, currency, {
            "user_id": str(user_id),
            "usdt_amount": str(quote.usdt_amount),
            "wallet_address": validation.normalized_address,
            "network": validation.network.value,
            "tier": quote.tier_name,
        })

        tx = Transaction(
            user_id=str(user_id),
            provider=PaymentProvider.STRIPE,
            provider_payment_id=intent.provider_ref,
            amount_usd=quote.usd_amount,
            currency=currency,
            usdt_amount=quote.usdt_amount,
            exchange_rate=quote.rate,
            fee_amount=quote.fee_amount,
            fee_percentage=quote.fee_percentage,
            wallet_address=validation.normalized_address,
            network=validation.network,
            status=TransactionStatus.PENDING,
            metadata={"tier_name": quote.tier_name},
        )
        tx = self.store.add(tx)
        logger.info("Card payment created: tx=%s intent=%s usd=%s usdt=%s tier=%s",
                    tx.id, intent.provider_ref, quote.usd_amount, quote.usdt_amount, quote.tier_name)
        return CardPayment(tx, quote, intent.client_secret)

    async def create_onramp_order(
        self,
        user_id: str,
        usd_amount: Any,
        wallet_address: str,
        network: Any,
    ) -> Transaction:
        """
        Store an initiated on-ramp order before the provider widget opens.

        The USDT amount is an estimate (amount minus the provider's typical fee)
        and is replaced by the amount reported on completion.

        Raises:
            OutOfRangeError: Outside [onramp minimum, maximum transaction]
            InvalidAddressError: If the wallet address does not match the network
        """
        amount = to_decimal(usd_amount)
        upper = self.calculator.max_transaction
        if amount < self.onramp_min_usd or amount > upper:
            raise OutOfRangeError(f"Amount must be between ${self.onramp_min_usd} and ${upper}")
        validation = self._validated_address(wallet_address, network)

        estimated = truncate_cents(amount * (Decimal("1") - self.onramp_fee_estimate))
        tx = Transaction(
            user_id=str(user_id),
            provider=PaymentProvider.TRANSAK,
            amount_usd=amount,
            usdt_amount=estimated,
            wallet_address=validation.normalized_address,
            network=validation.network,
            status=TransactionStatus.INITIATED,
            metadata={"estimated_usdt": str(estimated), "requested_network": str(network)},
        )
        tx = self.store.add(tx)
        logger.info("On-ramp order created: tx=%s usd=%s estimated_usdt=%s", tx.id, amount, estimated)
        return tx

    async def confirm_payment(self, transaction_id: str, user_id: Optional[str] = None) -> TransitionResult:
        """
        Confirm a card payment synchronously and start the USDT dispatch.

        Safe to race with the card provider's webhook: both paths go through
        the same per-transaction lock and ordering check, so the dispatch runs once.
        A transaction already in payment_confirmed has its conversion started.

        Returns:
            The last transition result; applied is False when the webhook got there first

        Raises:
            TransactionNotFoundError: Unknown id or not owned by user_id
            PaymentCaptureError: Provider failure or payment not successful
        """
        tx = self.get_transaction(transaction_id, user_id)
        if tx.provider is not PaymentProvider.STRIPE or not tx.provider_payment_id:
            raise PaymentCaptureError(f"Transaction {tx.id} has no card payment to confirm")

        capture = await self._call_capture(self._require_capture().confirm, tx.provider_payment_id)
        if not capture.succeeded:
            logger.warning("Payment %s not successful (status=%s)", capture.provider_ref, capture.status)
            raise PaymentCaptureError(f"Payment not successful (status={capture.status})")

        try:
            result = await self.machine.transition(tx.id, TransactionStatus.PAYMENT_CONFIRMED, Evidence(
                card_last4=capture.card_last4,
                card_brand=capture.card_brand,
            ))
            if not result.applied:
                # Confirmed earlier; the transfer may never have started
                logger.info("Transaction %s already payment_confirmed, resuming conversion", tx.id)
            return await self.machine.process_conversion(tx.id)
        except (AlreadyTerminalError, InvalidTransitionError) as e:
            # The webhook moved the transaction past payment_confirmed first
            logger.info("Confirmation of %s is stale: %s", tx.id, e)
            current = self.get_transaction(tx.id)
            return TransitionResult(current, current.status, current.status, applied=False, reason=str(e))

    def get_transaction(self, transaction_id: str, user_id: Optional[str] = None) -> Transaction:
        """
        Raises:
            TransactionNotFoundError: Unknown id, or the transaction belongs to another user
        """
        tx = self.store.get(transaction_id)
        if tx is None or (user_id is not None and tx.user_id != str(user_id)):
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return tx

    def list_transactions(
        self,
        user_id: Optional[str] = None,
        status: Any = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page:
        """
        List transactions newest first with optional filters.

        Args:
            user_id: Only this user's transactions (None = all, for operators)
            status: Only this status
            start: initiated_at >= start
            end: initiated_at <= end
            page: 1-based page number
            limit: Page size
        """
        page = max(1, int(page))
        limit = max(1, int(limit))
        txs = self.store.for_user(str(user_id)) if user_id is not None else self.store.all()
        if status is not None:
            wanted = TransactionStatus(status)
            txs = [t for t in txs if t.status == wanted]
        if start is not None:
            txs = [t for t in txs if t.initiated_at >= start]
        if end is not None:
            txs = [t for t in txs if t.initiated_at <= end]
        txs.sort(key=lambda t: t.initiated_at, reverse=True)
        offset = (page - 1) * limit
        return Page(items=txs[offset:offset + limit], total=len(txs), page=page, limit=limit)
