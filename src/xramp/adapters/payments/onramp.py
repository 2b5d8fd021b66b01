# src/xramp/adapters/payments/onramp.py
"""
On-ramp Webhook Signature Verification

The on-ramp provider signs the raw request body with HMAC-SHA256 using the
partner webhook secret and sends the hex digest in a header.

Files that USE this module:
- xramp.application.reconciler (handle_onramp)
- tests.test_payments
"""
import hashlib
import hmac
import json
from typing import Any, Dict, Optional, Union

from xramp.domain.errors import SignatureError


def onramp_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_onramp_signature(body: Union[bytes, str], signature: Optional[str], secret: str) -> Dict[str, Any]:
    """
    Verify and parse an on-ramp webhook body.

    Args:
        body: Raw request body
        signature: Hex digest sent by the provider
        secret: Shared webhook secret

    Returns:
        Parsed JSON body

    Raises:
        SignatureError: On a missing or mismatching signature, or an unparsable body
    """
    raw = body.encode("utf-8") if isinstance(body, str) else body
    if not signature:
        raise SignatureError("Missing signature header")
    expected = onramp_signature(raw, secret)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise SignatureError("Invalid signature")
    try:
        data = json.loads(raw.decode("utf-8"))
    except ValueError as e:
        raise SignatureError("Invalid payload") from e
    if not isinstance(data, dict):
        raise SignatureError("Invalid payload")
    return data
