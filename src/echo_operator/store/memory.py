"""In-memory Echo store with resource-version fencing.

Behaves like the API server for the operations the operator needs:
objects are deep-copied on the way in and out, every write bumps a
cluster-wide resource version, and status writes carrying a stale
version are rejected with :class:`ConflictError`.

Used by the ``demo`` command and throughout the test suite::

    backend = InMemoryJobBackend()
    store = InMemoryEchoStore(job_backend=backend)
    echo = await store.create(Echo.new("hello", "hello"))
    ...
    await store.delete(echo.key)   # owned jobs are garbage-collected
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import uuid
from collections.abc import AsyncIterator

from echo_operator.api.v1alpha1 import KIND, Echo, ObjectKey, utcnow
from echo_operator.controller.triggers import EventBroadcaster, EventType, WatchEvent
from echo_operator.core.errors import AlreadyExistsError, ConflictError, NotFoundError
from echo_operator.core.logging import get_logger
from echo_operator.runtimes.memory import InMemoryJobBackend

logger = get_logger(__name__)


class InMemoryEchoStore:
    """Dictionary-backed :class:`EchoStore` that also serves watches."""

    def __init__(self, job_backend: InMemoryJobBackend | None = None) -> None:
        self._objects: dict[ObjectKey, Echo] = {}
        self._versions = itertools.count(1)
        self._lock = asyncio.Lock()
        self._events = EventBroadcaster()
        self._job_backend = job_backend
        self.status_writes = 0

    def _next_version(self) -> str:
        return str(next(self._versions))

    def _publish(self, event_type: EventType, echo: Echo, old: Echo | None = None) -> None:
        self._events.publish(
            WatchEvent(
                type=event_type,
                kind=KIND,
                namespace=echo.metadata.namespace,
                name=echo.metadata.name,
                labels=dict(echo.metadata.labels),
                status=echo.status,
                old_status=old.status if old is not None else None,
            )
        )

    async def create(self, echo: Echo) -> Echo:
        """Create an Echo; server-side fields are assigned here."""
        async with self._lock:
            if echo.key in self._objects:
                raise AlreadyExistsError(f"Echo {echo.key} already exists")
            stored = copy.deepcopy(echo)
            stored.metadata.uid = stored.metadata.uid or str(uuid.uuid4())
            stored.metadata.resource_version = self._next_version()
            stored.metadata.generation = 1
            stored.metadata.creation_timestamp = utcnow()
            self._objects[echo.key] = stored
            self._publish(EventType.ADDED, stored)
            return copy.deepcopy(stored)

    async def get(self, key: ObjectKey) -> Echo:
        async with self._lock:
            try:
                return copy.deepcopy(self._objects[key])
            except KeyError:
                raise NotFoundError(f"Echo {key} not found", key=str(key)) from None

    async def list(self, namespace: str | None = None) -> list[Echo]:
        async with self._lock:
            return [
                copy.deepcopy(echo)
                for key, echo in sorted(self._objects.items())
                if namespace is None or key.namespace == namespace
            ]

    async def update_status(self, echo: Echo) -> Echo:
        async with self._lock:
            current = self._objects.get(echo.key)
            if current is None:
                raise NotFoundError(f"Echo {echo.key} not found", key=str(echo.key))
            if current.metadata.resource_version != echo.metadata.resource_version:
                raise ConflictError(
                    f"Echo {echo.key} was modified: stored version "
                    f"{current.metadata.resource_version}, "
                    f"update based on {echo.metadata.resource_version}",
                    key=str(echo.key),
                )
            stored = copy.deepcopy(current)
            stored.status = copy.deepcopy(echo.status)
            stored.metadata.resource_version = self._next_version()
            self._objects[echo.key] = stored
            self.status_writes += 1
            self._publish(EventType.MODIFIED, stored, old=current)
            return copy.deepcopy(stored)

    async def touch(self, key: ObjectKey) -> Echo:
        """Bump the resource version without changing content.

        Simulates a concurrent writer (e.g. a label edit by another client).
        """
        async with self._lock:
            current = self._objects.get(key)
            if current is None:
                raise NotFoundError(f"Echo {key} not found", key=str(key))
            stored = copy.deepcopy(current)
            stored.metadata.resource_version = self._next_version()
            self._objects[key] = stored
            self._publish(EventType.MODIFIED, stored, old=current)
            return copy.deepcopy(stored)

    async def delete(self, key: ObjectKey) -> None:
        """Delete an Echo and garbage-collect the jobs it owns."""
        async with self._lock:
            echo = self._objects.pop(key, None)
            if echo is None:
                raise NotFoundError(f"Echo {key} not found", key=str(key))
            self._publish(EventType.DELETED, echo)
        if self._job_backend is not None:
            collected = await self._job_backend.collect_owned(echo.metadata.uid)
            logger.debug("owned_jobs_collected", echo=str(key), jobs=collected)

    def watch(self) -> AsyncIterator[WatchEvent]:
        return self._events.watch()

    def close(self) -> None:
        self._events.close()
