# src/xramp/adapters/payments/stripe_capture.py
"""
Stripe Payment Capture - Card Payments via PaymentIntents

Wraps the stripe library for the three things the engine needs from the card
provider: creating a PaymentIntent, reading back its status after the client
confirmed it, and verifying webhook signatures.

Files that USE this module:
- xramp.app (builds the capture with the configured secret key)
- tests.test_payments (unit tests with patched stripe calls)

Files that this module USES:
- xramp.adapters.payments.base (PaymentCapture, IntentInfo, CaptureResult)
- xramp.domain.events (StripeEvent)
- xramp.config (settings for API and webhook secrets)
"""
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe

from xramp.adapters.payments.base import CaptureResult, IntentInfo, PaymentCapture
from xramp.config import settings
from xramp.domain.errors import PaymentCaptureError, SignatureError
from xramp.domain.events import StripeEvent
from xramp.domain.models import CENT

log = logging.getLogger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300


def _as_dict(obj: Any) -> Dict[str, Any]:
    """Plain dict view of a StripeObject (its str() is the JSON form)."""
    if isinstance(obj, dict):
        return dict(obj)
    return json.loads(str(obj))


def _to_cents(amount: Decimal) -> int:
    return int((amount / CENT).to_integral_value())


def _from_cents(cents: Any) -> Decimal:
    return (Decimal(int(cents or 0)) * CENT).quantize(CENT)


def _card_from_intent(intent: Dict[str, Any]) -> Dict[str, Optional[str]]:
    charge = intent.get("latest_charge")
    if not isinstance(charge, dict):
        charges = (intent.get("charges") or {}).get("data") or []
        charge = charges[0] if charges else {}
    card = (charge.get("payment_method_details") or {}).get("card") or {}
    return {"last4": card.get("last4"), "brand": card.get("brand")}


class StripePaymentCapture(PaymentCapture):
    """PaymentCapture backed by Stripe PaymentIntents."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        if self.api_key:
            stripe.api_key = self.api_key

    def create_intent(self, amount: Decimal, currency: str, metadata: Dict[str, str]) -> IntentInfo:
        """
        Create a PaymentIntent for the amount.

        Raises:
            PaymentCaptureError: If Stripe rejects the request
        """
        try:
            intent = _as_dict(stripe.PaymentIntent.create(
                amount=_to_cents(amount),
                currency=currency.lower(),
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
            ))
        except stripe.StripeError as e:
            log.error("Stripe PaymentIntent creation failed: %s", e)
            raise PaymentCaptureError(f"Failed to create payment intent: {e}") from e

        log.info("Stripe PaymentIntent created: id=%s status=%s", intent.get("id"), intent.get("status"))
        return IntentInfo(
            provider_ref=str(intent["id"]),
            client_secret=intent.get("client_secret"),
            status=str(intent.get("status", "")),
            amount=_from_cents(intent.get("amount")),
            currency=str(intent.get("currency", currency)).upper(),
        )

    def confirm(self, reference: str) -> CaptureResult:
        """
        Read back a PaymentIntent after the client confirmed it.

        Raises:
            PaymentCaptureError: If Stripe cannot be reached or the intent is unknown
        """
        try:
            intent = _as_dict(stripe.PaymentIntent.retrieve(reference, expand=["latest_charge"]))
        except stripe.StripeError as e:
            log.error("Stripe PaymentIntent retrieval failed for %s: %s", reference, e)
            raise PaymentCaptureError(f"Failed to retrieve payment intent: {e}") from e

        card = _card_from_intent(intent)
        return CaptureResult(
            provider_ref=str(intent.get("id", reference)),
            status=str(intent.get("status", "")),
            amount=_from_cents(intent.get("amount")),
            card_last4=card["last4"],
            card_brand=card["brand"],
            raw=intent,
        )

    def verify_webhook_signature(self, payload: bytes, signature: str,
                                 secret: Optional[str] = None) -> StripeEvent:
        """
        Verify the Stripe-Signature header and parse the event.

        Raises:
            SignatureError: On a missing secret, bad signature or unparsable payload
        """
        secret = secret or self.webhook_secret
        if not secret:
            raise SignatureError("Webhook secret not configured")
        if not signature:
            raise SignatureError("Missing signature header")

        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(text, signature, secret, SIGNATURE_TOLERANCE_SECONDS)
        except stripe.SignatureVerificationError as e:
            log.warning("Stripe webhook signature verification failed: %s", e)
            raise SignatureError("Invalid signature") from e

        try:
            data = json.loads(text)
        except ValueError as e:
            raise SignatureError("Invalid payload") from e
        if not isinstance(data, dict):
            raise SignatureError("Invalid payload")
        return StripeEvent.from_payload(data)
