# src/xramp/domain/events.py
"""
Provider Events - Webhook Payload Normalization

Card and on-ramp providers deliver differently shaped webhooks. Each provider
has its own event type here (StripeEvent, OnRampEvent); both normalize into a
single WebhookEvent that the reconciler understands.

Files that USE this module:
- xramp.application.reconciler (consumes WebhookEvent)
- xramp.adapters.payments.stripe_capture (builds StripeEvent from verified payloads)
- tests.test_events (unit tests)

Files that this module USES:
- xramp.domain.models (PaymentProvider)
"""

from __future__ import annotations  # Enable postponed evaluation of annotations

from dataclasses import dataclass, field  # Immutable event containers
from decimal import Decimal, InvalidOperation  # Provider amounts
from enum import Enum  # Event and reference kinds
from typing import Any, Dict, Optional, Union  # Type hints

from xramp.domain.models import PaymentProvider  # Provider enum


class EventKind(str, Enum):
    CREATED = "created"
    PROGRESS = "progress"
    SUCCESS = "success"
    FAILURE = "failure"
    CANCEL = "cancel"
    UNKNOWN = "unknown"


class RefKind(str, Enum):
    """Which key the provider used to point at our transaction."""
    PROVIDER_PAYMENT_ID = "provider_payment_id"
    TRANSACTION_ID = "transaction_id"


@dataclass(frozen=True)
class WebhookEvent:
    """
    Provider-neutral inbound event.

    Attributes:
        provider: Provider that sent the event
        provider_event_id: Id used for at-most-once application
        transaction_ref: Provider payment id or our own transaction id
        ref_kind: Which of the two transaction_ref is
        kind: Normalized event kind
        payload: Raw provider object, kept for metadata echo-back
    """
    provider: PaymentProvider
    provider_event_id: str
    transaction_ref: str
    ref_kind: RefKind
    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    crypto_amount: Optional[Decimal] = None
    transaction_hash: Optional[str] = None
    provider_order_id: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None


STRIPE_EVENT_KINDS: Dict[str, EventKind] = {
    "payment_intent.created": EventKind.CREATED,
    "payment_intent.processing": EventKind.PROGRESS,
    "payment_intent.succeeded": EventKind.SUCCESS,
    "payment_intent.payment_failed": EventKind.FAILURE,
    "payment_intent.canceled": EventKind.CANCEL,
}

ONRAMP_EVENT_KINDS: Dict[str, EventKind] = {
    "ORDER_CREATED": EventKind.CREATED,
    "ORDER_PROCESSING": EventKind.PROGRESS,
    "ORDER_PAYMENT_VERIFYING": EventKind.PROGRESS,
    "ORDER_COMPLETED": EventKind.SUCCESS,
    "ORDER_FAILED": EventKind.FAILURE,
    "ORDER_CANCELLED": EventKind.CANCEL,
}


def _card_details(payment_intent: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """Pull card last4/brand from either the legacy charges list or an expanded latest_charge."""
    charge: Any = payment_intent.get("latest_charge")
    if not isinstance(charge, dict):
        charges = (payment_intent.get("charges") or {}).get("data") or []
        charge = charges[0] if charges else {}
    card = ((charge.get("payment_method_details") or {}).get("card")) or {}
    return {"last4": card.get("last4"), "brand": card.get("brand")}


def _parse_amount(value: Any) -> Optional[Decimal]:
    """Parse a provider amount; NaN, Infinity and garbage count as missing."""
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return amount if amount.is_finite() else None


@dataclass(frozen=True)
class StripeEvent:
    """A verified card-provider webhook event (payment_intent.* family)."""
    event_id: str
    event_type: str
    payment_intent: Dict[str, Any]

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "StripeEvent":
        return cls(
            event_id=str(data.get("id", "")),
            event_type=str(data.get("type", "")),
            payment_intent=dict((data.get("data") or {}).get("object") or {}),
        )

    def normalize(self) -> WebhookEvent:
        kind = STRIPE_EVENT_KINDS.get(self.event_type, EventKind.UNKNOWN)
        error = None
        if kind is EventKind.FAILURE:
            error = (self.payment_intent.get("last_payment_error") or {}).get("message") or "Payment failed"
        elif kind is EventKind.CANCEL:
            error = "Payment was canceled"
        card = _card_details(self.payment_intent)
        return WebhookEvent(
            provider=PaymentProvider.STRIPE,
            provider_event_id=self.event_id,
            transaction_ref=str(self.payment_intent.get("id", "")),
            ref_kind=RefKind.PROVIDER_PAYMENT_ID,
            kind=kind,
            payload=self.payment_intent,
            error_message=error,
            card_last4=card["last4"],
            card_brand=card["brand"],
        )


@dataclass(frozen=True)
class OnRampEvent:
    """An on-ramp order webhook (ORDER_* family), keyed by our transaction id."""
    event_id: Optional[str]
    event_name: str
    data: Dict[str, Any]

    @classmethod
    def from_payload(cls, body: Dict[str, Any]) -> "OnRampEvent":
        data = dict(body.get("data") or {})
        event_id = body.get("webhookId") or body.get("eventId") or data.get("eventId")
        return cls(
            event_id=str(event_id) if event_id else None,
            event_name=str(body.get("eventName") or body.get("eventID") or ""),
            data=data,
        )

    @property
    def dedup_id(self) -> str:
        """Explicit event id, or a deterministic one so that replays collapse."""
        if self.event_id:
            return self.event_id
        return f"{self.data.get('id', '')}:{self.event_name}:{self.data.get('status', '')}"

    def normalize(self) -> WebhookEvent:
        kind = ONRAMP_EVENT_KINDS.get(self.event_name, EventKind.UNKNOWN)
        error = None
        if kind is EventKind.FAILURE:
            error = self.data.get("statusMessage") or "Order failed"
        elif kind is EventKind.CANCEL:
            error = self.data.get("statusMessage") or "Order was cancelled"
        order_id = self.data.get("id")
        return WebhookEvent(
            provider=PaymentProvider.TRANSAK,
            provider_event_id=self.dedup_id,
            transaction_ref=str(self.data.get("partnerOrderId", "")),
            ref_kind=RefKind.TRANSACTION_ID,
            kind=kind,
            payload=self.data,
            error_message=error,
            crypto_amount=_parse_amount(self.data.get("cryptoAmount")),
            transaction_hash=self.data.get("transactionHash") or None,
            provider_order_id=str(order_id) if order_id else None,
        )


ProviderEvent = Union[StripeEvent, OnRampEvent]
