"""Job backend running each Echo as a ``batch/v1`` Job.

The Job carries a controller owner reference to its Echo, so the
cluster's garbage collector removes it when the Echo is deleted.

Status mapping::

    status.succeeded >= 1 or condition Complete=True   → SUCCEEDED
    condition Failed=True                              → FAILED
    anything else                                      → RUNNING
    HTTP 404                                           → ABSENT
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from kubernetes import client

from echo_operator.api.v1alpha1 import OwnerReference
from echo_operator.controller.triggers import EventType, WatchEvent
from echo_operator.core.errors import AlreadyExistsError, BackendUnavailableError, NotFoundError
from echo_operator.core.logging import get_logger
from echo_operator.kube import translate_api_error, watch_stream
from echo_operator.runtimes._types import (
    JOB_KIND,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    JobRequest,
    JobState,
    JobStatus,
)

logger = get_logger(__name__)

CONTAINER_NAME = "echo"


def build_job(request: JobRequest) -> client.V1Job:
    """Render a :class:`JobRequest` as a ``batch/v1`` Job manifest."""
    owner_references = None
    if request.owner is not None:
        owner_references = [
            client.V1OwnerReference(
                api_version=request.owner.api_version,
                kind=request.owner.kind,
                name=request.owner.name,
                uid=request.owner.uid,
                controller=request.owner.controller,
                block_owner_deletion=request.owner.block_owner_deletion,
            )
        ]
    container = client.V1Container(
        name=CONTAINER_NAME,
        image=request.image,
        command=request.command,
        env=[client.V1EnvVar(name=k, value=v) for k, v in request.env.items()],
    )
    return client.V1Job(
        api_version="batch/v1",
        kind=JOB_KIND,
        metadata=client.V1ObjectMeta(
            name=request.name,
            namespace=request.namespace,
            labels=dict(request.labels),
            owner_references=owner_references,
        ),
        spec=client.V1JobSpec(
            backoff_limit=request.backoff_limit,
            ttl_seconds_after_finished=request.ttl_seconds_after_finished,
            active_deadline_seconds=request.active_deadline_seconds,
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=dict(request.labels)),
                spec=client.V1PodSpec(restart_policy="Never", containers=[container]),
            ),
        ),
    )


def _true_condition(job: client.V1Job, type_: str) -> Any | None:
    for condition in (job.status.conditions if job.status else None) or ():
        if condition.type == type_ and condition.status == "True":
            return condition
    return None


def _controller_uid(job: client.V1Job) -> str | None:
    for ref in (job.metadata.owner_references if job.metadata else None) or ():
        if ref.controller:
            return ref.uid
    return None


def job_status(job: client.V1Job) -> JobStatus:
    """Map a Job's status onto :class:`JobStatus`."""
    status = job.status
    started_at = status.start_time if status else None
    finished_at = status.completion_time if status else None
    owner_uid = _controller_uid(job)

    if (status and (status.succeeded or 0) >= 1) or _true_condition(job, "Complete"):
        return JobStatus(
            JobState.SUCCEEDED, started_at=started_at, finished_at=finished_at, owner_uid=owner_uid
        )

    failed = _true_condition(job, "Failed")
    if failed is not None:
        return JobStatus(
            JobState.FAILED,
            message=failed.message or failed.reason,
            started_at=started_at,
            finished_at=getattr(failed, "last_transition_time", None),
            owner_uid=owner_uid,
        )
    return JobStatus(JobState.RUNNING, started_at=started_at, owner_uid=owner_uid)


def _status_snapshot(job: client.V1Job) -> tuple[Any, ...]:
    status = job.status
    if status is None:
        return ()
    conditions = tuple(
        sorted((c.type, c.status) for c in status.conditions or ())
    )
    return (status.active or 0, status.succeeded or 0, status.failed or 0, conditions)


class KubernetesJobBackend:
    """:class:`JobBackend` over ``BatchV1Api``.

    Args:
        api: BatchV1Api instance (created from the loaded configuration
            when omitted).
        namespace: Namespace to watch; None watches all namespaces.
    """

    def __init__(self, api: client.BatchV1Api | None = None, namespace: str | None = None) -> None:
        self._api = api or client.BatchV1Api()
        self._namespace = namespace
        self._last_seen: dict[tuple[str, str], tuple[Any, ...]] = {}

    async def create(self, request: JobRequest) -> None:
        body = build_job(request)
        try:
            await asyncio.to_thread(self._api.create_namespaced_job, request.namespace, body)
        except Exception as exc:
            raise translate_api_error(
                exc,
                f"Job {request.namespace}/{request.name}",
                unavailable=BackendUnavailableError,
                on_conflict=AlreadyExistsError,
            ) from exc

    async def get(self, namespace: str, name: str) -> JobStatus:
        try:
            job = await asyncio.to_thread(self._api.read_namespaced_job_status, name, namespace)
        except Exception as exc:
            error = translate_api_error(
                exc, f"Job {namespace}/{name}", unavailable=BackendUnavailableError
            )
            if isinstance(error, NotFoundError):
                return JobStatus.absent()
            raise error from exc
        return job_status(job)

    async def delete(self, namespace: str, name: str) -> None:
        try:
            await asyncio.to_thread(
                self._api.delete_namespaced_job,
                name,
                namespace,
                propagation_policy="Background",
            )
        except Exception as exc:
            error = translate_api_error(
                exc, f"Job {namespace}/{name}", unavailable=BackendUnavailableError
            )
            if isinstance(error, NotFoundError):
                return
            raise error from exc
        logger.info("job_deleted", job=name, namespace=namespace)

    async def watch(self) -> AsyncIterator[WatchEvent]:
        selector = f"{MANAGED_BY_LABEL}={MANAGED_BY_VALUE}"
        if self._namespace:
            list_fn: Any = self._api.list_namespaced_job
            kwargs: dict[str, Any] = {"namespace": self._namespace, "label_selector": selector}
        else:
            list_fn = self._api.list_job_for_all_namespaces
            kwargs = {"label_selector": selector}
        async for raw in watch_stream(list_fn, **kwargs):
            event = self.job_event(raw)
            if event is not None:
                yield event

    def job_event(self, raw: dict[str, Any]) -> WatchEvent | None:
        """Convert a raw Job watch event, tracking the previous status snapshot."""
        try:
            event_type = EventType(raw.get("type"))
        except ValueError:
            return None
        job: client.V1Job = raw["object"]
        meta = job.metadata
        key = (meta.namespace, meta.name)
        snapshot = _status_snapshot(job)
        if event_type is EventType.DELETED:
            old = self._last_seen.pop(key, None)
        else:
            old = self._last_seen.get(key)
            self._last_seen[key] = snapshot
        if event_type is EventType.ADDED and old is not None:
            event_type = EventType.MODIFIED
        return WatchEvent(
            type=event_type,
            kind=JOB_KIND,
            namespace=meta.namespace,
            name=meta.name,
            labels=dict(meta.labels or {}),
            owner_references=tuple(
                OwnerReference(
                    api_version=ref.api_version,
                    kind=ref.kind,
                    name=ref.name,
                    uid=ref.uid,
                    controller=bool(ref.controller),
                    block_owner_deletion=bool(ref.block_owner_deletion),
                )
                for ref in meta.owner_references or ()
            ),
            status=snapshot,
            old_status=old,
        )
