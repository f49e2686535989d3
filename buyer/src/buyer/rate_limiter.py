"""
Per-seller rate limiting using token bucket algorithm.

Limits how many swap requests a single seller address (or client IP when no
address is given) can make per period. Buckets that have refilled completely
carry no information and are pruned periodically so that memory stays bounded
by the number of recently active sellers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

# Prune idle buckets every this many checks
PRUNE_INTERVAL = 1000


@dataclass
class TokenBucket:
    """
    Token bucket holding up to ``capacity`` requests, refilled continuously
    at ``refill_rate`` tokens per second.
    """

    capacity: int
    refill_rate: float
    tokens: float = field(init=False)
    last_refill: float = field(init=False)

    def __post_init__(self) -> None:
        self.tokens = float(self.capacity)
        self.last_refill = time.monotonic()

    def _refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(self.capacity, self.tokens + (now - self.last_refill) * self.refill_rate)
        self.last_refill = now

    def consume(self, tokens: int = 1) -> bool:
        """Take ``tokens`` if available. Returns False when rate limited."""
        self._refill()
        if self.tokens < tokens:
            return False
        self.tokens -= tokens
        return True

    def seconds_until_available(self, tokens: int = 1) -> float:
        self._refill()
        return max(0.0, (tokens - self.tokens) / self.refill_rate)

    @property
    def is_full(self) -> bool:
        self._refill()
        return self.tokens >= self.capacity


class RateLimiter:
    """
    Per-identity rate limiter.

    ``max_requests`` is both the burst size and the number of requests
    allowed per ``period`` seconds.
    """

    def __init__(self, max_requests: int = 10, period: float = 3600.0):
        self.max_requests = max_requests
        self.period = period
        self._buckets: dict[str, TokenBucket] = {}
        self._checks = 0

    def check(self, key: str) -> bool:
        """Returns True if a request from ``key`` is allowed."""
        self._checks += 1
        if self._checks % PRUNE_INTERVAL == 0:
            self.prune()

        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(self.max_requests, self.max_requests / self.period)
            self._buckets[key] = bucket
        return bucket.consume()

    def retry_after(self, key: str) -> int:
        """Whole seconds until ``key`` may make another request."""
        bucket = self._buckets.get(key)
        if bucket is None:
            return 0
        wait = bucket.seconds_until_available()
        return int(wait) + 1 if wait > 0 else 0

    def prune(self) -> int:
        """Drop buckets that have refilled completely. Returns how many."""
        idle = [key for key, bucket in self._buckets.items() if bucket.is_full]
        for key in idle:
            del self._buckets[key]
        return len(idle)
