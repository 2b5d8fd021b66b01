"""
Domain Layer - Pure Business Objects

This package contains domain models, provider event shapes and business errors.
No dependencies on infrastructure or external systems.
"""

from xramp.domain.models import (
    AddressValidation,
    ConversionQuote,
    ConversionTier,
    MarketComparison,
    Network,
    PaymentProvider,
    TierInfo,
    Transaction,
    TransactionStats,
    TransactionStatus,
    TransferResult,
    TransitionResult,
)
from xramp.domain.events import (
    EventKind,
    OnRampEvent,
    ProviderEvent,
    RefKind,
    StripeEvent,
    WebhookEvent,
)
from xramp.domain.errors import (
    AlreadyTerminalError,
    ConsistencyError,
    DomainError,
    InputError,
    InvalidTransitionError,
    MarginViolationError,
    NoTierError,
    OutOfRangeError,
    StateError,
    TransactionNotFoundError,
)

__all__ = [
    "AddressValidation",
    "ConversionQuote",
    "ConversionTier",
    "MarketComparison",
    "Network",
    "PaymentProvider",
    "TierInfo",
    "Transaction",
    "TransactionStats",
    "TransactionStatus",
    "TransferResult",
    "TransitionResult",
    "EventKind",
    "OnRampEvent",
    "ProviderEvent",
    "RefKind",
    "StripeEvent",
    "WebhookEvent",
    "AlreadyTerminalError",
    "ConsistencyError",
    "DomainError",
    "InputError",
    "InvalidTransitionError",
    "MarginViolationError",
    "NoTierError",
    "OutOfRangeError",
    "StateError",
    "TransactionNotFoundError",
]
