"""
kumo.retry — Retry logic with exponential backoff.

Only transport failures flagged retryable are retried (timeouts, dropped
connections, 5xx, 429). Business errors returned by the remote service
and authentication failures are raised on the first attempt. A server
supplied ``Retry-After`` is honored when it is longer than the backoff.
"""

import random
import time
from typing import Any, Callable, TypeVar

from kumo.config import RetryConfig
from kumo.errors import KumoError, TransportError
from kumo.logger import get_logger

T = TypeVar("T")

JITTER = 0.25


class RetryExhausted(KumoError):
    """All retry attempts exhausted."""

    def __init__(self, stage: str, attempts: int, last_error: Exception):
        super().__init__(
            message=f"All {attempts} retry attempts exhausted: {last_error}",
            code="RETRY_EXHAUSTED",
            stage=stage,
            suggestions=(
                "Check that the API url is reachable",
                "Lower rate_limit.requests_per_second or execution.concurrency "
                "if the service is throttling",
            ),
            payload={
                "attempts": attempts,
                "last_error_type": type(last_error).__name__,
                "last_error_message": str(last_error),
            },
        )
        self.attempts = attempts
        self.last_error = last_error


class RetryHandler:
    """Retries transient transport failures with jittered exponential backoff."""

    def __init__(self, config: RetryConfig, sleep: Callable[[float], None] = time.sleep):
        self._config = config
        self._sleep = sleep
        self._logger = get_logger()

    def compute_delay(self, attempt: int, error: Exception | None = None) -> float:
        """
        Seconds to wait before retrying after ``attempt`` (1-indexed) failed.

        Backoff doubles from ``initial_delay_ms`` up to ``max_delay_ms``
        with ±25% jitter; a ``retry_after`` on the error raises the floor,
        still capped at ``max_delay_ms``.
        """
        max_delay_s = self._config.max_delay_ms / 1000.0
        backoff = min(
            self._config.initial_delay_ms / 1000.0 * (2 ** (attempt - 1)),
            max_delay_s,
        )
        delay = max(0.0, backoff + backoff * JITTER * (2 * random.random() - 1))

        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            delay = max(delay, min(float(retry_after), max_delay_s))
        return delay

    def is_retryable(self, error: Exception) -> bool:
        return isinstance(error, TransportError) and error.retryable

    def execute(
        self,
        func: Callable[..., T],
        *args: Any,
        stage: str = "retry",
        **kwargs: Any,
    ) -> T:
        """
        Call ``func(*args, **kwargs)`` until it succeeds or attempts run out.

        Raises:
            RetryExhausted: If every attempt failed with a retryable error.
            Exception: The first non-retryable error, unchanged.
        """
        attempts = self._config.max_attempts
        attempt = 1
        while True:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if not self.is_retryable(e):
                    raise
                if attempt >= attempts:
                    raise RetryExhausted(stage, attempts, e) from e

                delay = self.compute_delay(attempt, e)
                self._logger.warn(
                    f"Attempt {attempt}/{attempts} failed, retrying in {delay:.2f}s: {e}",
                    stage=stage,
                    attempt=attempt,
                    delay_s=round(delay, 3),
                    http_status=e.http_status,
                )
                self._sleep(delay)
                attempt += 1
