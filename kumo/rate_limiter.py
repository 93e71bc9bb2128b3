"""
kumo.rate_limiter — Token bucket rate limiting for outgoing requests.

Requests run on worker threads (see kumo.saleor), so the bucket is guarded
by a threading lock rather than an asyncio one.
"""

import threading
import time

from kumo.config import RateLimitConfig


class TokenBucketRateLimiter:
    """Token bucket rate limiter for HTTP requests."""

    def __init__(self, requests_per_second: int, burst: int):
        self._rate = requests_per_second
        self._burst = burst
        self._tokens = float(burst)
        self._last_update = time.monotonic()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> "TokenBucketRateLimiter":
        return cls(config.requests_per_second, config.burst)

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_update
        self._tokens = min(self._burst, self._tokens + elapsed * self._rate)
        self._last_update = now

    def acquire(self) -> None:
        """Acquire a token, blocking if necessary."""
        with self._lock:
            self._refill()

            if self._tokens >= 1:
                self._tokens -= 1
                return

            wait_time = (1 - self._tokens) / self._rate
            self._tokens = 0

        time.sleep(wait_time)
