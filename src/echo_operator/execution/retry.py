"""Retry strategies and the per-key rate limiter used by the work queue.

A failed reconciliation is re-enqueued after a delay that grows with the
number of consecutive failures for that key. A successful pass calls
``forget`` and the next failure starts from the base delay again.

Example:
    >>> limiter = RateLimiter(ExponentialBackoff(base_delay=0.5, max_delay=300.0, jitter=False))
    >>> limiter.when("default/hello")
    0.5
    >>> limiter.when("default/hello")
    1.0
    >>> limiter.forget("default/hello")
    >>> limiter.when("default/hello")
    0.5
"""

from __future__ import annotations

import random
import threading
from abc import ABC, abstractmethod
from collections.abc import Hashable
from dataclasses import dataclass


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before the next attempt.

        Args:
            attempt: Zero-based attempt number (0 = first retry)

        Returns:
            Delay in seconds
        """
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) ± jitter

    Attributes:
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
    """

    base_delay: float = 0.5
    max_delay: float = 300.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.1

    def next_delay(self, attempt: int) -> float:
        # Cap the exponent so large attempt counts cannot overflow
        exponent = min(attempt, 64)
        delay = min(self.base_delay * (self.multiplier ** exponent), self.max_delay)

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = min(max(0.0, delay), self.max_delay)

        return delay


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between retries."""

    delay: float = 1.0

    def next_delay(self, attempt: int) -> float:
        return self.delay


class RateLimiter:
    """Per-key failure counter feeding a :class:`RetryStrategy`.

    Thread-safe so that watch pumps running in threads may share it.
    """

    def __init__(self, strategy: RetryStrategy | None = None) -> None:
        self._strategy = strategy or ExponentialBackoff()
        self._failures: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, key: Hashable) -> float:
        """Record a failure for ``key`` and return the delay before retrying."""
        with self._lock:
            attempt = self._failures.get(key, 0)
            self._failures[key] = attempt + 1
        return self._strategy.next_delay(attempt)

    def forget(self, key: Hashable) -> None:
        """Reset the failure count for ``key``."""
        with self._lock:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        with self._lock:
            return self._failures.get(key, 0)
