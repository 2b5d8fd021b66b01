# src/xramp/adapters/payments/base.py
"""
Base Payment Capture Interface

Files that USE this module:
- xramp.adapters.payments.stripe_capture (StripePaymentCapture implements PaymentCapture)
- xramp.application.payment_service (creates and confirms card payments)
- xramp.application.reconciler (verifies card webhooks)

Files that this module USES:
- xramp.domain.events (StripeEvent)
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from xramp.domain.events import StripeEvent


@dataclass(frozen=True)
class IntentInfo:
    """A freshly created card payment, to be completed by the client."""
    provider_ref: str
    client_secret: Optional[str]
    status: str
    amount: Decimal
    currency: str = "USD"


@dataclass(frozen=True)
class CaptureResult:
    """Provider view of a payment after a confirmation attempt."""
    provider_ref: str
    status: str  # provider status, "succeeded" when funds are captured
    amount: Decimal
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class PaymentCapture(ABC):
    """
    Card payment provider boundary. All methods are blocking.

    Provider failures are raised as PaymentCaptureError, bad webhook
    signatures as SignatureError.
    """

    @abstractmethod
    def create_intent(self, amount: Decimal, currency: str, metadata: Dict[str, str]) -> IntentInfo:
        raise NotImplementedError

    @abstractmethod
    def confirm(self, reference: str) -> CaptureResult:
        raise NotImplementedError

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str,
                                 secret: Optional[str] = None) -> StripeEvent:
        raise NotImplementedError
