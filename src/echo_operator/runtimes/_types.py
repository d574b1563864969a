"""Job backend types and protocol.

This module defines the narrow interface the reconciler uses to run an
Echo's work:

- JobBackend: Protocol for creating, inspecting and deleting jobs
- JobRequest: Everything a backend needs to create one job
- JobStatus / JobState: The backend's observed view of a job

The backend owns scheduling of the job onto real capacity; the reconciler
only ever sees the four coarse states below.

.. code-block:: text

    JobBackend Protocol: 3 Methods
    ┌────────────────────────────────────────────────────────┐
    │  create(request) → None      AlreadyExistsError if dup │
    │  get(namespace, name) → JobStatus   ABSENT if missing  │
    │  delete(namespace, name) → None     idempotent         │
    └────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from echo_operator.api.v1alpha1 import GROUP, OwnerReference

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "echo-operator"
ECHO_NAME_LABEL = f"{GROUP}/echo"
JOB_KIND = "Job"


class JobState(str, Enum):
    """Coarse outcome of a job as seen by the reconciler."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABSENT = "absent"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED)


@dataclass(frozen=True)
class JobStatus:
    """Observed status of one job.

    ``message`` carries backend detail (e.g. a failure reason) that the
    reconciler copies into the Echo's status narrative. ``owner_uid`` is
    the UID in the job's controller owner reference, when it has one.
    """

    state: JobState
    message: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    owner_uid: str | None = None

    @classmethod
    def absent(cls) -> JobStatus:
        return cls(state=JobState.ABSENT)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"state": self.state.value}
        if self.message:
            d["message"] = self.message
        if self.started_at:
            d["started_at"] = self.started_at.isoformat()
        if self.finished_at:
            d["finished_at"] = self.finished_at.isoformat()
        return d


@dataclass(frozen=True)
class JobRequest:
    """Specification of the job created for one Echo.

    Example:
        >>> request = JobRequest(
        ...     name="echo-job-hello",
        ...     namespace="default",
        ...     message="hello",
        ...     image="busybox:1.36",
        ...     owner=echo.owner_reference(),
        ... )
    """

    name: str
    namespace: str
    message: str
    image: str
    owner: OwnerReference | None = None
    labels: dict[str, str] = field(default_factory=dict)
    backoff_limit: int = 0
    ttl_seconds_after_finished: int | None = None
    active_deadline_seconds: int | None = None

    @property
    def command(self) -> list[str]:
        return ["/bin/sh", "-c", 'echo "$ECHO_MESSAGE"']

    @property
    def env(self) -> dict[str, str]:
        return {"ECHO_MESSAGE": self.message}


@runtime_checkable
class JobBackend(Protocol):
    """Protocol for job execution backends.

    Implementations must honor owner references for garbage collection,
    or clean up explicitly when the owning Echo is deleted.
    """

    async def create(self, request: JobRequest) -> None:
        """Create a job named ``request.name``.

        Raises:
            AlreadyExistsError: A job with that name already exists.
            BackendUnavailableError: Transient backend failure.
        """
        ...

    async def get(self, namespace: str, name: str) -> JobStatus:
        """Return the job's status; ``JobState.ABSENT`` when it does not exist."""
        ...

    async def delete(self, namespace: str, name: str) -> None:
        """Delete a job. Deleting a missing job is a no-op."""
        ...
