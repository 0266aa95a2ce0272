"""Retry schedule for batch delivery."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable

import httpx

from .errors import RetryableError


def default_retry_classifier(exc: Exception) -> bool:
    """True for failures worth another attempt (network, timeout, 5xx)."""
    if isinstance(exc, RetryableError):
        return True
    if isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError)):
        return True
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: initial_backoff_ms * multiplier ** attempt, capped.

    ``attempt`` counts from 0, so with the defaults the retries wait
    1000, 2000 and 4000 ms. ``max_retries`` bounds retries after the first
    attempt.
    """

    max_retries: int = 3
    initial_backoff_ms: int = 1000
    max_backoff_ms: int = 30_000
    backoff_multiplier: float = 2.0
    jitter: bool = False
    classify_retryable: Callable[[Exception], bool] = field(default=default_retry_classifier)

    def next_backoff_ms(self, attempt: int) -> int:
        delay = self.initial_backoff_ms * (self.backoff_multiplier**attempt)
        delay = min(delay, self.max_backoff_ms)
        if self.jitter:
            # 50-100% of the computed delay
            delay = delay * random.uniform(0.5, 1.0)
        return int(delay)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries
