# src/xramp/domain/models.py
"""
Domain Models - Pure Business Objects

This module contains domain models representing core business concepts:
- Conversion tiers and quotes
- Transactions and their lifecycle status
- Transfer results, address validation results
- Aggregated statistics and market comparisons

Files that USE this module:
- xramp.application.* (all services use domain models)
- xramp.adapters.* (adapters create and use domain models)
- tests.* (tests use domain models for test data)

Files that this module USES:
- xramp.domain.errors (OutOfRangeError, ImmutableFieldError, UnsupportedNetworkError)
"""

from __future__ import annotations  # Enable postponed evaluation of annotations

import uuid  # Opaque transaction identifiers
from dataclasses import dataclass, field  # Decorators for creating data classes
from datetime import datetime, timezone  # Date/time utilities for timestamps
from decimal import Decimal, ROUND_DOWN, InvalidOperation  # Exact money arithmetic
from enum import Enum  # String enums for statuses and networks
from typing import Any, Dict, List, Optional  # Type hints

from xramp.domain.errors import (
    ImmutableFieldError,
    InvalidAmountError,
    UnsupportedNetworkError,
)

CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """
    Convert a user-supplied amount to Decimal.

    Floats go through str() so 450.1 becomes Decimal("450.1") and not its
    binary expansion.

    Raises:
        InvalidAmountError: If the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise InvalidAmountError(f"Invalid amount: {value!r}") from e
    if not result.is_finite():
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    return result


def truncate_cents(value: Decimal) -> Decimal:
    """Truncate (never round up) to 2 decimal places."""
    return value.quantize(CENT, rounding=ROUND_DOWN)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionStatus(str, Enum):
    INITIATED = "initiated"
    PENDING = "pending"
    PAYMENT_PROCESSING = "payment_processing"
    PAYMENT_CONFIRMED = "payment_confirmed"
    CONVERTING_TO_USDT = "converting_to_usdt"
    USDT_SENT = "usdt_sent"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.CANCELLED}
)


class PaymentProvider(str, Enum):
    STRIPE = "stripe"
    TRANSAK = "transak"


class Network(str, Enum):
    """Supported USDT networks. TRC20 uses T-addresses, ERC20/BEP20 share the 0x shape."""
    TRC20 = "TRC20"
    ERC20 = "ERC20"
    BEP20 = "BEP20"

    @property
    def address_family(self) -> str:
        return "tron" if self is Network.TRC20 else "evm"

    @classmethod
    def parse(cls, value: Any) -> "Network":
        """
        Parse a network name, accepting on-ramp aliases (tron, ethereum, polygon, bsc).

        Raises:
            UnsupportedNetworkError: If the name is not recognised
        """
        if isinstance(value, Network):
            return value
        key = str(value or "").strip().lower()
        if key in NETWORK_ALIASES:
            return NETWORK_ALIASES[key]
        raise UnsupportedNetworkError(
            f"Unsupported network: {value!r}. Use TRC20, ERC20, or BEP20."
        )


NETWORK_ALIASES: Dict[str, Network] = {
    "trc20": Network.TRC20,
    "tron": Network.TRC20,
    "erc20": Network.ERC20,
    "ethereum": Network.ERC20,
    "polygon": Network.ERC20,
    "bep20": Network.BEP20,
    "bsc": Network.BEP20,
}


@dataclass(frozen=True)
class ConversionTier:
    """
    A USD amount bracket with its own fixed USDT conversion rate.

    Attributes:
        name: Display name of the tier (e.g., "Standard")
        min_usd: Inclusive lower bound in USD
        max_usd: Exclusive upper bound in USD, None for the last (unbounded) tier
        rate: USDT received per 1 USD (0 < rate <= 1)
    """
    name: str
    min_usd: Decimal
    max_usd: Optional[Decimal]
    rate: Decimal

    def contains(self, usd_amount: Decimal) -> bool:
        if usd_amount < self.min_usd:
            return False
        return self.max_usd is None or usd_amount < self.max_usd


@dataclass(frozen=True)
class ConversionQuote:
    """
    Result of applying a tier's rate to a specific USD amount.

    Attributes:
        usd_amount: Amount the user pays in USD
        usdt_amount: Amount the user receives, truncated to 2 decimals
        rate: Tier rate applied
        fee_amount: usd_amount - usdt_amount
        fee_percentage: fee_amount / usd_amount * 100, truncated to 2 decimals
        tier_name: Name of the tier applied
    """
    usd_amount: Decimal
    usdt_amount: Decimal
    rate: Decimal
    fee_amount: Decimal
    fee_percentage: Decimal
    tier_name: str

    def breakdown(self) -> Dict[str, Any]:
        return {
            "you_pay": self.usd_amount,
            "you_receive": self.usdt_amount,
            "service_fee": self.fee_amount,
            "rate": f"1 USD = {self.rate} USDT",
        }


@dataclass(frozen=True)
class TierInfo:
    """Display view of a tier with a worked example (tier floor + 50 USD)."""
    name: str
    min_usd: Decimal
    max_usd: Optional[Decimal]  # None means unlimited
    rate: Decimal
    example_pay: Decimal
    example_receive: Decimal


@dataclass(frozen=True)
class AddressValidation:
    valid: bool
    normalized_address: str
    network: Optional[Network] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class TransferResult:
    """
    Outcome of a stablecoin dispatch.

    Attributes:
        tx_hash: Exchange withdrawal id or on-chain hash
        status: Provider-reported status ("pending", "completed")
        is_simulated: True when no real exchange was configured
        network: Network the funds were sent on
        explorer_url: Block explorer link for the hash
        timestamp: When the dispatch was accepted
    """
    tx_hash: str
    status: str
    is_simulated: bool
    network: Network
    explorer_url: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class Transaction:
    """
    A single fiat → USDT purchase tracked through its lifecycle.

    Mutated only by the state machine and the reconciler; never deleted.
    """
    user_id: str
    amount_usd: Decimal
    wallet_address: str
    network: Network
    provider: PaymentProvider = PaymentProvider.STRIPE
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    provider_payment_id: Optional[str] = None
    currency: str = "USD"
    usdt_amount: Decimal = Decimal("0")
    exchange_rate: Optional[Decimal] = None
    fee_amount: Optional[Decimal] = None
    fee_percentage: Optional[Decimal] = None
    status: TransactionStatus = TransactionStatus.PENDING
    transaction_hash: Optional[str] = None
    error_message: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    initiated_at: datetime = field(default_factory=utcnow)
    payment_confirmed_at: Optional[datetime] = None
    usdt_sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.currency = (self.currency or "USD").upper()
        self.wallet_address = self.wallet_address.strip()

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def processed_event_ids(self) -> List[str]:
        return self.metadata.setdefault("processed_event_ids", [])

    def has_processed(self, event_id: str) -> bool:
        return event_id in self.metadata.get("processed_event_ids", [])

    def mark_processed(self, event_id: str) -> None:
        if not self.has_processed(event_id):
            self.processed_event_ids.append(event_id)

    def assign_transaction_hash(self, tx_hash: str) -> None:
        """
        Set the dispatch hash once.

        Raises:
            ImmutableFieldError: If a different hash was already recorded
        """
        if self.transaction_hash is not None and self.transaction_hash != tx_hash:
            raise ImmutableFieldError(
                f"Transaction {self.id} already has hash {self.transaction_hash}"
            )
        self.transaction_hash = tx_hash

    @property
    def processing_time_seconds(self) -> Optional[int]:
        if self.completed_at and self.initiated_at:
            return round((self.completed_at - self.initiated_at).total_seconds())
        return None

    def to_public_dict(self) -> Dict[str, Any]:
        """Subset of fields safe to push to the owning user."""
        return {
            "transaction_id": self.id,
            "status": self.status.value,
            "amount_usd": str(self.amount_usd),
            "usdt_amount": str(self.usdt_amount),
            "network": self.network.value,
            "transaction_hash": self.transaction_hash,
            "error_message": self.error_message,
        }

    def to_json(self) -> Dict[str, Any]:
        """
        Convert Transaction to JSON-serializable dictionary.

        Returns:
            Dictionary with Decimals as strings and ISO-formatted timestamps
        """
        def _dec(v: Optional[Decimal]) -> Optional[str]:
            return None if v is None else str(v)

        def _ts(v: Optional[datetime]) -> Optional[str]:
            return None if v is None else v.isoformat()

        return {
            "id": self.id,
            "user_id": self.user_id,
            "provider": self.provider.value,
            "provider_payment_id": self.provider_payment_id,
            "amount_usd": _dec(self.amount_usd),
            "currency": self.currency,
            "usdt_amount": _dec(self.usdt_amount),
            "exchange_rate": _dec(self.exchange_rate),
            "fee_amount": _dec(self.fee_amount),
            "fee_percentage": _dec(self.fee_percentage),
            "wallet_address": self.wallet_address,
            "network": self.network.value,
            "status": self.status.value,
            "transaction_hash": self.transaction_hash,
            "error_message": self.error_message,
            "card_last4": self.card_last4,
            "card_brand": self.card_brand,
            "initiated_at": _ts(self.initiated_at),
            "payment_confirmed_at": _ts(self.payment_confirmed_at),
            "usdt_sent_at": _ts(self.usdt_sent_at),
            "completed_at": _ts(self.completed_at),
            "updated_at": _ts(self.updated_at),
            "metadata": self.metadata,
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> "Transaction":
        """
        Create Transaction from JSON dictionary.

        Args:
            data: Dictionary produced by to_json()

        Returns:
            Transaction instance with parsed Decimals and timestamps
        """
        def _dec(v: Any) -> Optional[Decimal]:
            return None if v is None else Decimal(str(v))

        def _ts(v: Any) -> Optional[datetime]:
            if not v:
                return None
            ts = datetime.fromisoformat(str(v).replace("Z", "+00:00"))
            return ts.astimezone(timezone.utc)

        return Transaction(
            id=data["id"],
            user_id=data["user_id"],
            provider=PaymentProvider(data.get("provider", PaymentProvider.STRIPE.value)),
            provider_payment_id=data.get("provider_payment_id"),
            amount_usd=Decimal(str(data["amount_usd"])),
            currency=data.get("currency", "USD"),
            usdt_amount=_dec(data.get("usdt_amount")) or Decimal("0"),
            exchange_rate=_dec(data.get("exchange_rate")),
            fee_amount=_dec(data.get("fee_amount")),
            fee_percentage=_dec(data.get("fee_percentage")),
            wallet_address=data["wallet_address"],
            network=Network(data.get("network", Network.TRC20.value)),
            status=TransactionStatus(data.get("status", TransactionStatus.PENDING.value)),
            transaction_hash=data.get("transaction_hash"),
            error_message=data.get("error_message"),
            card_last4=data.get("card_last4"),
            card_brand=data.get("card_brand"),
            initiated_at=_ts(data.get("initiated_at")) or utcnow(),
            payment_confirmed_at=_ts(data.get("payment_confirmed_at")),
            usdt_sent_at=_ts(data.get("usdt_sent_at")),
            completed_at=_ts(data.get("completed_at")),
            updated_at=_ts(data.get("updated_at")) or utcnow(),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class TransitionResult:
    """
    Outcome of a state machine transition request.

    applied is False for same-status replays, which change nothing.
    """
    transaction: Transaction
    previous_status: TransactionStatus
    new_status: TransactionStatus
    applied: bool
    reason: str = ""


@dataclass(frozen=True)
class TransactionStats:
    """Aggregated counts and sums over a set of transactions."""
    total_transactions: int
    count_by_status: Dict[str, int]
    completed_count: int
    failed_count: int
    total_usd: Decimal
    total_usdt: Decimal
    total_fees: Decimal
    average_usd: Decimal
    success_rate: Decimal  # percentage of completed over all, 0 for an empty set


@dataclass(frozen=True)
class MarketComparison:
    """Our tier rate versus the reference market rate, for transparency displays."""
    usd_amount: Decimal
    market_rate: Decimal
    market_usdt: Decimal
    our_rate: Decimal
    our_usdt: Decimal
    difference_usdt: Decimal
    difference_percentage: Decimal
    source: str
