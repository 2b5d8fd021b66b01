"""
Shared Utilities - Cross-cutting Concerns

This package contains shared utilities used across all layers:
- Validation (wallet addresses, Telegram settings)
- Per-transaction locking
- Rate limiting for operator commands
- Logging configuration
"""

from xramp.shared.validators import (
    explorer_url,
    is_valid_wallet_address,
    validate_bot_token,
    validate_chat_id,
    validate_wallet_address,
)
from xramp.shared.keyed_lock import KeyedLock
from xramp.shared.rate_limiter import RATE_LIMITS, RateLimitConfig, RateLimiter, rate_limiter

__all__ = [
    "explorer_url",
    "is_valid_wallet_address",
    "validate_bot_token",
    "validate_chat_id",
    "validate_wallet_address",
    "KeyedLock",
    "RATE_LIMITS",
    "RateLimitConfig",
    "RateLimiter",
    "rate_limiter",
]
