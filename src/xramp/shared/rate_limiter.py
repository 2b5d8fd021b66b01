"""
Rate Limiter - Abuse Prevention for Operator Commands

Sliding-window limiter keyed by an identifier (e.g. "admin:user:123"). An
identifier that exceeds its window is blocked for a cool-down period.

Files that USE this module:
- xramp.adapters.telegram.handlers (rate_limiter and RATE_LIMITS for every command)
- tests.test_rate_limiter (unit tests)

Files that this module USES:
- None (pure utility implementation)
"""
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for one limit bucket type."""
    max_requests: int
    time_window: float  # seconds
    block_duration: float = 300  # 5 minutes default


class RateLimiter:
    """In-memory sliding-window limiter with temporary blocking."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._blocked_until: Dict[str, float] = {}

    def _prune(self, identifier: str, window: float, now: float) -> Deque[float]:
        requests = self._requests[identifier]
        cutoff = now - window
        while requests and requests[0] <= cutoff:
            requests.popleft()
        return requests

    def is_allowed(self, identifier: str, config: RateLimitConfig) -> bool:
        """
        Record a request and tell whether it is within the limit.

        Returns:
            True if allowed, False if limited (the identifier is then blocked
            for config.block_duration)
        """
        now = self._clock()
        blocked_until = self._blocked_until.get(identifier)
        if blocked_until is not None:
            if now < blocked_until:
                return False
            del self._blocked_until[identifier]
            self._requests.pop(identifier, None)

        requests = self._prune(identifier, config.time_window, now)
        if len(requests) >= config.max_requests:
            self._blocked_until[identifier] = now + config.block_duration
            return False
        requests.append(now)
        return True

    def remaining(self, identifier: str, config: RateLimitConfig) -> int:
        if identifier in self._blocked_until and self._clock() < self._blocked_until[identifier]:
            return 0
        requests = self._prune(identifier, config.time_window, self._clock())
        return max(0, config.max_requests - len(requests))

    def blocked_until(self, identifier: str) -> Optional[float]:
        return self._blocked_until.get(identifier)

    def reset(self) -> None:
        self._requests.clear()
        self._blocked_until.clear()


# Global rate limiter instance
rate_limiter = RateLimiter()

RATE_LIMITS = {
    "admin_command": RateLimitConfig(max_requests=30, time_window=60),  # 30 per minute
    "market_query": RateLimitConfig(max_requests=10, time_window=60),  # /rate and /compare hit external feeds
}
