"""
Payment Adapters - Card Capture and On-ramp Webhooks
"""

from xramp.adapters.payments.base import CaptureResult, IntentInfo, PaymentCapture
from xramp.adapters.payments.onramp import onramp_signature, verify_onramp_signature
from xramp.adapters.payments.stripe_capture import StripePaymentCapture

__all__ = [
    "CaptureResult",
    "IntentInfo",
    "PaymentCapture",
    "StripePaymentCapture",
    "onramp_signature",
    "verify_onramp_signature",
]
