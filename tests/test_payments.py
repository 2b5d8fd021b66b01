# tests/test_payments.py
"""
Payment Boundary Tests - Stripe Capture and On-ramp Signatures

Files that USE this module:
- pytest (test runner executes these tests)

Files that this module USES:
- xramp.adapters.payments (StripePaymentCapture, onramp signature helpers)
- stripe (StripeError for failure paths)
- unittest.mock (patch for Stripe API calls)
"""
import hashlib  # Digest for signature checks
import hmac  # Compute expected webhook signatures
import json  # Build and inspect JSON payloads
import time  # Timestamps for signed payloads
from decimal import Decimal  # Exact amounts in assertions
from unittest.mock import patch  # Patching for testing without real API calls

import pytest  # Testing framework for writing and running tests
import stripe  # Card provider SDK (errors and webhook helpers)

from xramp.adapters.payments import StripePaymentCapture, onramp_signature, verify_onramp_signature  # Payment adapters to test
from xramp.domain.errors import PaymentCaptureError, SignatureError  # Expected exceptions

WEBHOOK_SECRET = "whsec_test_secret"


def stripe_header(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    sig = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


EVENT = json.dumps({
    "id": "evt_1",
    "type": "payment_intent.succeeded",
    "data": {"object": {"id": "pi_123", "amount": 45000}},
})


@pytest.fixture
def capture():
    return StripePaymentCapture(api_key="sk_test_123", webhook_secret=WEBHOOK_SECRET)


class TestStripeWebhookSignature:
    def test_valid_signature(self, capture):
        event = capture.verify_webhook_signature(EVENT.encode("utf-8"), stripe_header(EVENT))
        assert event.event_id == "evt_1"
        assert event.event_type == "payment_intent.succeeded"
        assert event.payment_intent["id"] == "pi_123"

    def test_wrong_secret(self, capture):
        with pytest.raises(SignatureError, match="Invalid signature"):
            capture.verify_webhook_signature(EVENT.encode("utf-8"), stripe_header(EVENT, secret="whsec_other"))

    def test_tampered_payload(self, capture):
        header = stripe_header(EVENT)
        tampered = EVENT.replace("45000", "1")
        with pytest.raises(SignatureError):
            capture.verify_webhook_signature(tampered.encode("utf-8"), header)

    def test_expired_timestamp(self, capture):
        header = stripe_header(EVENT, timestamp=int(time.time()) - 3600)
        with pytest.raises(SignatureError):
            capture.verify_webhook_signature(EVENT.encode("utf-8"), header)

    def test_missing_header(self, capture):
        with pytest.raises(SignatureError, match="Missing signature"):
            capture.verify_webhook_signature(EVENT.encode("utf-8"), "")

    def test_missing_secret(self):
        with patch("xramp.adapters.payments.stripe_capture.settings") as mock_settings:
            mock_settings.stripe_secret_key = ""
            mock_settings.stripe_webhook_secret = ""
            bare = StripePaymentCapture()
        with pytest.raises(SignatureError, match="not configured"):
            bare.verify_webhook_signature(EVENT.encode("utf-8"), stripe_header(EVENT))


class TestStripeIntents:
    @patch("xramp.adapters.payments.stripe_capture.stripe.PaymentIntent.create")
    def test_create_intent(self, mock_create, capture):
        mock_create.return_value = {
            "id": "pi_123", "client_secret": "pi_123_secret", "status": "requires_payment_method",
            "amount": 45000, "currency": "usd",
        }
        intent = capture.create_intent(Decimal("450"), "USD", {"user_id": "u1"})

        assert intent.provider_ref == "pi_123"
        assert intent.client_secret == "pi_123_secret"
        assert intent.amount == Decimal("450.00")
        assert intent.currency == "USD"
        kwargs = mock_create.call_args.kwargs
        assert kwargs["amount"] == 45000
        assert kwargs["currency"] == "usd"
        assert kwargs["metadata"] == {"user_id": "u1"}

    @patch("xramp.adapters.payments.stripe_capture.stripe.PaymentIntent.create")
    def test_create_intent_error(self, mock_create, capture):
        mock_create.side_effect = stripe.StripeError("Invalid API Key provided")
        with pytest.raises(PaymentCaptureError, match="Failed to create payment intent"):
            capture.create_intent(Decimal("450"), "USD", {})

    @patch("xramp.adapters.payments.stripe_capture.stripe.PaymentIntent.retrieve")
    def test_confirm_reads_card_details(self, mock_retrieve, capture):
        mock_retrieve.return_value = {
            "id": "pi_123", "status": "succeeded", "amount": 45000,
            "latest_charge": {"payment_method_details": {"card": {"last4": "4242", "brand": "visa"}}},
        }
        result = capture.confirm("pi_123")
        assert result.succeeded
        assert (result.card_last4, result.card_brand) == ("4242", "visa")
        mock_retrieve.assert_called_once_with("pi_123", expand=["latest_charge"])

    @patch("xramp.adapters.payments.stripe_capture.stripe.PaymentIntent.retrieve")
    def test_confirm_not_succeeded(self, mock_retrieve, capture):
        mock_retrieve.return_value = {"id": "pi_123", "status": "requires_action", "amount": 45000}
        assert not capture.confirm("pi_123").succeeded


class TestOnRampSignature:
    BODY = b'{"eventName": "ORDER_COMPLETED", "data": {"partnerOrderId": "tx_1"}}'

    def test_valid(self):
        data = verify_onramp_signature(self.BODY, onramp_signature(self.BODY, "s3cret"), "s3cret")
        assert data["eventName"] == "ORDER_COMPLETED"

    def test_uppercase_hex_accepted(self):
        sig = onramp_signature(self.BODY, "s3cret").upper()
        assert verify_onramp_signature(self.BODY, sig, "s3cret")["data"]["partnerOrderId"] == "tx_1"

    def test_mismatch(self):
        with pytest.raises(SignatureError, match="Invalid signature"):
            verify_onramp_signature(self.BODY, onramp_signature(self.BODY, "other"), "s3cret")

    def test_missing(self):
        with pytest.raises(SignatureError, match="Missing"):
            verify_onramp_signature(self.BODY, None, "s3cret")

    def test_signed_garbage(self):
        body = b"not json"
        with pytest.raises(SignatureError, match="Invalid payload"):
            verify_onramp_signature(body, onramp_signature(body, "s3cret"), "s3cret")
