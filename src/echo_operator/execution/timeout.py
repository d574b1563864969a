"""Deadline enforcement for async collaborator calls.

Every reconciliation pass runs under a pass deadline, and every store or
backend call inside it under a shorter call deadline. Deadlines nest: an
inner deadline never outlives the outer one.

Examples:
    >>> async with with_deadline_async(60.0, "reconcile default/hello"):
    ...     async with with_deadline_async(15.0, "store.get"):
    ...         echo = await store.get(key)

    Check remaining time:

    >>> async with with_deadline_async(30.0) as ctx:
    ...     if ctx.remaining() < 5.0:
    ...         ...

Deadline state lives in a ``ContextVar``, so concurrent worker tasks
each see only their own nesting.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TypeVar

from echo_operator.core.errors import CallTimeoutError

T = TypeVar("T")


class TimeoutExpired(CallTimeoutError):
    """Raised when an operation exceeds its deadline.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the operation ran before being interrupted
        operation: Name/description of the operation
    """

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str = "operation",
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation

        msg = f"Operation '{operation}' timed out after {timeout:.2f}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"

        super().__init__(msg, operation=operation)


@dataclass
class DeadlineContext:
    """Deadline state for one ``with_deadline_async`` block.

    Attributes:
        deadline: Absolute deadline timestamp (monotonic clock)
        timeout_seconds: Effective timeout in seconds
        operation: Name/description of the operation
        start_time: When the deadline context started
    """

    deadline: float
    timeout_seconds: float
    operation: str = "operation"
    start_time: float = field(default_factory=time.monotonic)

    def remaining(self) -> float:
        """Remaining time until deadline; negative once expired."""
        return self.deadline - time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.start_time

    def is_expired(self) -> bool:
        return time.monotonic() >= self.deadline


_current_deadline: ContextVar[DeadlineContext | None] = ContextVar(
    "echo_operator_deadline", default=None
)


def get_current_deadline() -> DeadlineContext | None:
    """Return the innermost active deadline of the current task, if any."""
    return _current_deadline.get()


def get_effective_timeout(requested: float) -> float:
    """Minimum of ``requested`` and the time left on the enclosing deadline."""
    current = get_current_deadline()
    if current is None:
        return requested
    return max(0.0, min(requested, current.remaining()))


@asynccontextmanager
async def with_deadline_async(
    seconds: float, operation: str | None = None
) -> AsyncIterator[DeadlineContext]:
    """Async context manager enforcing a time limit.

    Args:
        seconds: Maximum time allowed
        operation: Name/description for error messages

    Raises:
        TimeoutExpired: If the deadline is exceeded
        ValueError: If seconds < 0
    """
    if seconds < 0:
        raise ValueError(f"Timeout must be non-negative, got {seconds}")

    effective = get_effective_timeout(seconds)
    now = time.monotonic()
    ctx = DeadlineContext(
        deadline=now + effective,
        timeout_seconds=effective,
        operation=operation or "operation",
        start_time=now,
    )

    token = _current_deadline.set(ctx)
    try:
        async with asyncio.timeout(effective):
            yield ctx
    except TimeoutError:
        raise TimeoutExpired(
            timeout=effective,
            elapsed=ctx.elapsed,
            operation=ctx.operation,
        ) from None
    finally:
        _current_deadline.reset(token)


async def call_with_deadline(awaitable: Awaitable[T], seconds: float, operation: str) -> T:
    """Await ``awaitable`` under a deadline of ``seconds``."""
    async with with_deadline_async(seconds, operation):
        return await awaitable
