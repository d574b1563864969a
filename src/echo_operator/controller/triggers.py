"""Event trigger binding: which changes enqueue which reconciliation keys.

Two watch sources feed the controller:

- the Echo kind itself: any create / update / delete enqueues that Echo
- the Job kind: a status change (or delete) on a job enqueues the Echo
  that owns it

Delivery is at-least-once. The work queue collapses repeated
notifications for the same key, and the state machine's idempotency
absorbs whatever still gets through.

.. code-block:: text

    WatchEvent(kind="Job", name="echo-job-hello", owner=Echo/hello)
        │
        ▼  owns("Job", owner_kind="Echo")
    ObjectKey("default", "hello") ──► WorkQueue.add()

The event ``type`` is informational for logging; nothing downstream
branches on it.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from echo_operator.api.v1alpha1 import KIND, ObjectKey, OwnerReference
from echo_operator.runtimes._types import ECHO_NAME_LABEL


class EventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class WatchEvent:
    """A backend-agnostic change notification for one object.

    ``status`` / ``old_status`` are comparable snapshots of the object's
    status, used by predicates to ignore changes that do not matter.
    """

    type: EventType
    kind: str
    namespace: str
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    owner_references: tuple[OwnerReference, ...] = ()
    status: Any = None
    old_status: Any = None

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    @property
    def reason(self) -> str:
        return f"{self.kind} {self.type.value.lower()}"


EventSource = AsyncIterable[WatchEvent]
Mapper = Callable[[WatchEvent], list[ObjectKey]]
Predicate = Callable[[WatchEvent], bool]


def _always(event: WatchEvent) -> bool:
    return True


def status_changed(event: WatchEvent) -> bool:
    """Pass creates, deletes, and updates whose status snapshot moved."""
    if event.type is not EventType.MODIFIED:
        return True
    return event.status != event.old_status


@dataclass(frozen=True)
class Binding:
    """Routes events of one kind to reconciliation keys."""

    kind: str
    mapper: Mapper
    predicate: Predicate = _always

    def keys_for(self, event: WatchEvent) -> list[ObjectKey]:
        if event.kind != self.kind or not self.predicate(event):
            return []
        return self.mapper(event)


def for_resource(kind: str = KIND) -> Binding:
    """Bind the reconciled kind: every change enqueues the object itself."""
    return Binding(kind=kind, mapper=lambda event: [event.key])


def owner_key(event: WatchEvent, owner_kind: str = KIND) -> list[ObjectKey]:
    """Resolve the owning Echo from the controller owner reference.

    Falls back to the Echo name label for backends that cannot attach
    owner references.
    """
    for ref in event.owner_references:
        if ref.kind == owner_kind and ref.controller:
            return [ObjectKey(event.namespace, ref.name)]
    owner_name = event.labels.get(ECHO_NAME_LABEL)
    if owner_name:
        return [ObjectKey(event.namespace, owner_name)]
    return []


def owns(kind: str, owner_kind: str = KIND) -> Binding:
    """Bind an owned kind: status changes enqueue the owner."""
    return Binding(
        kind=kind,
        mapper=lambda event: owner_key(event, owner_kind),
        predicate=status_changed,
    )


class EventBroadcaster:
    """Fan-out of watch events to any number of async subscribers.

    Used by the in-memory store and job backend. Each ``watch()`` call
    gets its own unbounded queue; ``close()`` ends every open stream.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[Any]] = []
        self._closed = False

    def publish(self, event: WatchEvent) -> None:
        for queue in self._subscribers:
            queue.put_nowait(event)

    def close(self) -> None:
        self._closed = True
        for queue in self._subscribers:
            queue.put_nowait(self._CLOSED)

    @property
    def subscribers(self) -> int:
        return len(self._subscribers)

    def watch(self) -> AsyncIterator[WatchEvent]:
        """Subscribe now; every event published after this call is delivered."""
        queue: asyncio.Queue[Any] = asyncio.Queue()
        if self._closed:
            queue.put_nowait(self._CLOSED)
        else:
            self._subscribers.append(queue)
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue[Any]) -> AsyncIterator[WatchEvent]:
        try:
            while True:
                item = await queue.get()
                if item is self._CLOSED:
                    return
                yield item
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)
