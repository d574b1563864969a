"""In-memory job backend: a test double with scriptable outcomes.

Stands in for the cluster's batch API in the ``demo`` command and in
tests. Jobs are keyed by (namespace, name); creating a duplicate raises
:class:`AlreadyExistsError`, exactly like the real backend.

Outcomes are scripted either explicitly::

    backend.set_state("default", "echo-job-hello", JobState.SUCCEEDED)
    backend.evict("default", "echo-job-hello")        # job lost

or automatically, by resolving every job to ``auto_complete`` after it
has been observed ``complete_after`` times::

    backend = InMemoryJobBackend(auto_complete=JobState.SUCCEEDED, complete_after=1)

Owner references are honored through :meth:`collect_owned`, which the
in-memory store calls when an Echo is deleted.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field, replace
from datetime import datetime

from echo_operator.api.v1alpha1 import utcnow
from echo_operator.controller.triggers import EventBroadcaster, EventType, WatchEvent
from echo_operator.core.errors import AlreadyExistsError, BackendUnavailableError
from echo_operator.core.logging import get_logger
from echo_operator.runtimes._types import JOB_KIND, JobRequest, JobState, JobStatus

logger = get_logger(__name__)


@dataclass
class JobRecord:
    """One stored job."""

    request: JobRequest
    status: JobStatus
    created_at: datetime = field(default_factory=utcnow)
    reads: int = 0


class InMemoryJobBackend:
    """Dictionary-backed :class:`JobBackend`.

    Parameters
    ----------
    auto_complete
        Terminal state every job resolves to on its own, or ``None`` to
        leave jobs running until scripted.
    complete_after
        Number of status reads a job stays running before ``auto_complete``
        applies.
    """

    def __init__(
        self,
        *,
        auto_complete: JobState | None = None,
        complete_after: int = 1,
    ) -> None:
        if auto_complete is not None and not auto_complete.is_terminal:
            raise ValueError(f"auto_complete must be terminal, got {auto_complete.value}")
        self._jobs: dict[tuple[str, str], JobRecord] = {}
        self._lock = asyncio.Lock()
        self._events = EventBroadcaster()
        self._auto_complete = auto_complete
        self._complete_after = complete_after
        self.created: list[JobRequest] = []
        self.create_attempts = 0
        self.fail_next: BaseException | None = None

    def _publish(self, event_type: EventType, record: JobRecord, old: JobStatus | None = None) -> None:
        request = record.request
        self._events.publish(
            WatchEvent(
                type=event_type,
                kind=JOB_KIND,
                namespace=request.namespace,
                name=request.name,
                labels=dict(request.labels),
                owner_references=(request.owner,) if request.owner else (),
                status=record.status,
                old_status=old,
            )
        )

    def _maybe_fail(self) -> None:
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error

    async def create(self, request: JobRequest) -> None:
        async with self._lock:
            self.create_attempts += 1
            self._maybe_fail()
            key = (request.namespace, request.name)
            if key in self._jobs:
                raise AlreadyExistsError(
                    f"Job {request.namespace}/{request.name} already exists",
                    job=request.name,
                )
            record = JobRecord(
                request=request,
                status=JobStatus(state=JobState.RUNNING, started_at=utcnow()),
            )
            self._jobs[key] = record
            self.created.append(request)
            self._publish(EventType.ADDED, record)
            logger.debug("job_stored", job=request.name, namespace=request.namespace)

    async def get(self, namespace: str, name: str) -> JobStatus:
        async with self._lock:
            self._maybe_fail()
            record = self._jobs.get((namespace, name))
            if record is None:
                return JobStatus.absent()
            record.reads += 1
            if (
                self._auto_complete is not None
                and not record.status.state.is_terminal
                and record.reads > self._complete_after
            ):
                self._transition(record, self._auto_complete)
            owner = record.request.owner
            return replace(record.status, owner_uid=owner.uid if owner is not None else None)

    async def delete(self, namespace: str, name: str) -> None:
        async with self._lock:
            record = self._jobs.pop((namespace, name), None)
            if record is not None:
                self._publish(EventType.DELETED, record)

    # ── Scripting helpers ──────────────────────────────────────────

    def _transition(self, record: JobRecord, state: JobState, message: str | None = None) -> None:
        old = record.status
        record.status = replace(
            old,
            state=state,
            message=message,
            finished_at=utcnow() if state.is_terminal else None,
        )
        self._publish(EventType.MODIFIED, record, old=old)

    def set_state(
        self,
        namespace: str,
        name: str,
        state: JobState,
        message: str | None = None,
    ) -> None:
        """Force a job into ``state`` and emit a watch event."""
        record = self._jobs.get((namespace, name))
        if record is None:
            raise KeyError(f"No job {namespace}/{name}")
        self._transition(record, state, message)

    def evict(self, namespace: str, name: str) -> None:
        """Remove a job behind the operator's back (node loss, manual delete)."""
        record = self._jobs.pop((namespace, name), None)
        if record is not None:
            self._publish(EventType.DELETED, record)

    def fail_with(self, error: BaseException | None = None) -> None:
        """Make the next create/get raise ``error`` (a transient outage by default)."""
        self.fail_next = error or BackendUnavailableError("simulated backend outage")

    async def collect_owned(self, owner_uid: str) -> list[str]:
        """Delete every job whose controller owner has ``owner_uid``."""
        async with self._lock:
            owned = [
                key for key, record in self._jobs.items()
                if record.request.owner is not None and record.request.owner.uid == owner_uid
            ]
            for key in owned:
                self._publish(EventType.DELETED, self._jobs.pop(key))
            return [name for _, name in owned]

    def jobs(self) -> dict[tuple[str, str], JobRecord]:
        return dict(self._jobs)

    def watch(self) -> AsyncIterator[WatchEvent]:
        return self._events.watch()

    def close(self) -> None:
        self._events.close()
