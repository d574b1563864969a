"""Deduplicating work queue with per-key serialization.

Semantics follow the classic controller work queue:

- ``dirty``: keys waiting to be processed. Adding a key that is already
  dirty is a no-op, so a burst of notifications collapses into one pass.
- ``processing``: keys handed to a worker and not yet ``done()``. A key
  added while processing is only marked dirty; ``done()`` puts it back
  in the queue. Two workers never hold the same key.

.. code-block:: text

    add(k) ──► k in dirty? ──yes──► drop
                   │ no
                   ▼
              dirty += k ──► k in processing? ──yes──► wait for done(k)
                                 │ no
                                 ▼
                            queue.append(k) ──► get() ──► processing += k
                                                              │
                                                          done(k) ──► k dirty? ─► requeue

Delayed adds (``add_after`` / ``add_rate_limited``) are timer callbacks
on the running loop and are cancelled by ``shut_down()``.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Hashable
from typing import Generic, TypeVar

from echo_operator.execution.retry import RateLimiter

K = TypeVar("K", bound=Hashable)


class WorkQueue(Generic[K]):
    """Async work queue keyed by resource identity."""

    def __init__(self, rate_limiter: RateLimiter | None = None) -> None:
        self._queue: deque[K] = deque()
        self._dirty: set[K] = set()
        self._processing: set[K] = set()
        self._waiting: dict[K, asyncio.TimerHandle] = {}
        self._wakeup = asyncio.Event()
        self._shutting_down = False
        self._rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def is_pending(self, key: K) -> bool:
        return key in self._dirty

    def is_processing(self, key: K) -> bool:
        return key in self._processing

    def add(self, key: K) -> None:
        """Mark ``key`` for processing."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._wakeup.set()

    def add_after(self, key: K, delay: float) -> None:
        """Add ``key`` once ``delay`` seconds have passed.

        Only the earliest pending delayed add per key is kept.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        ready_at = loop.time() + delay
        pending = self._waiting.get(key)
        if pending is not None:
            if pending.when() <= ready_at:
                return
            pending.cancel()

        def fire() -> None:
            self._waiting.pop(key, None)
            self.add(key)

        self._waiting[key] = loop.call_at(ready_at, fire)

    def add_rate_limited(self, key: K) -> float:
        """Add ``key`` after its per-key backoff delay; returns the delay.

        Called for a key whose pass just failed, so an add that arrived
        while that pass ran also waits out the delay.
        """
        if key in self._processing:
            self._dirty.discard(key)
        delay = self._rate_limiter.when(key)
        self.add_after(key, delay)
        return delay

    def forget(self, key: K) -> None:
        """Reset the per-key backoff after a successful pass."""
        self._rate_limiter.forget(key)

    def num_requeues(self, key: K) -> int:
        return self._rate_limiter.num_requeues(key)

    async def get(self) -> K | None:
        """Wait for the next key; ``None`` once the queue is shut down."""
        while not self._queue:
            if self._shutting_down:
                return None
            self._wakeup.clear()
            await self._wakeup.wait()
        key = self._queue.popleft()
        self._processing.add(key)
        self._dirty.discard(key)
        return key

    def done(self, key: K) -> None:
        """Release ``key``; requeue it if it was added while processing."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.append(key)
            self._wakeup.set()

    def shut_down(self) -> None:
        """Stop accepting keys, cancel timers, and release idle getters."""
        self._shutting_down = True
        for handle in self._waiting.values():
            handle.cancel()
        self._waiting.clear()
        self._queue.clear()
        self._dirty.clear()
        self._wakeup.set()
