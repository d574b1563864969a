"""Reconcile driver: one pass for one Echo identity.

``EchoReconciler.reconcile(key)`` is the only place that talks to the
outside world. The pass:

1. Fetches the Echo. Not found means deleted: done, nothing to clean up
   here (owned jobs are garbage-collected through owner references).
2. Queries the job backend, only when the Echo is Running.
3. Asks :func:`decide` what to do.
4. Applies the effect. A job that already exists counts as created,
   unless it is controlled by another Echo with the same name.
5. Persists the status if it changed, fenced by the resource version
   read in step 1. A conflict means another writer got there first; the
   pass is dropped and the watch event from that write triggers the next.
6. Translates the requeue directive into a :class:`ReconcileResult`, or
   raises for a lost job so the controller backs off.

Any other collaborator error propagates unchanged and the controller
retries the key with backoff.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from echo_operator.api.v1alpha1 import Echo, EchoPhase, ObjectKey, utcnow
from echo_operator.controller.state_machine import (
    CreateJob,
    Decision,
    RequeueKind,
    decide,
    job_name_for,
)
from echo_operator.core.errors import (
    AlreadyExistsError,
    ConflictError,
    ForeignJobError,
    LostJobError,
    NotFoundError,
)
from echo_operator.core.logging import get_logger
from echo_operator.execution.timeout import call_with_deadline
from echo_operator.runtimes._types import (
    ECHO_NAME_LABEL,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    JobBackend,
    JobRequest,
    JobStatus,
)
from echo_operator.store._types import EchoStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """Requeue directive handed back to the controller.

    ``requeue_after`` wins over ``requeue`` when both are set.
    """

    requeue: bool = False
    requeue_after: float | None = None

    @classmethod
    def done(cls) -> ReconcileResult:
        return cls()

    @classmethod
    def immediately(cls) -> ReconcileResult:
        return cls(requeue=True)

    @classmethod
    def after(cls, seconds: float) -> ReconcileResult:
        return cls(requeue_after=seconds)


@dataclass(frozen=True)
class JobTemplate:
    """Settings-derived shape of the job created for each Echo."""

    image: str = "busybox:1.36"
    backoff_limit: int = 0
    ttl_seconds_after_finished: int | None = None
    active_deadline_seconds: int | None = None

    def request_for(self, echo: Echo, effect: CreateJob) -> JobRequest:
        return JobRequest(
            name=effect.name,
            namespace=echo.metadata.namespace,
            message=effect.message,
            image=self.image,
            owner=echo.owner_reference(),
            labels={
                MANAGED_BY_LABEL: MANAGED_BY_VALUE,
                ECHO_NAME_LABEL: echo.metadata.name,
            },
            backoff_limit=self.backoff_limit,
            ttl_seconds_after_finished=self.ttl_seconds_after_finished,
            active_deadline_seconds=self.active_deadline_seconds,
        )


class EchoReconciler:
    """Drives one Echo toward its terminal phase per invocation.

    Args:
        store: Resource store client.
        backend: Job backend client.
        poll_interval: Requeue delay while the job is still running.
        call_timeout: Deadline for each store/backend call.
        template: Shape of created jobs.
        clock: Source of ``now`` handed to the state machine.
    """

    def __init__(
        self,
        store: EchoStore,
        backend: JobBackend,
        *,
        poll_interval: float = 10.0,
        call_timeout: float = 15.0,
        template: JobTemplate | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._backend = backend
        self._poll_interval = poll_interval
        self._call_timeout = call_timeout
        self._template = template or JobTemplate()
        self._clock = clock

    async def reconcile(self, key: ObjectKey) -> ReconcileResult:
        try:
            echo = await call_with_deadline(self._store.get(key), self._call_timeout, "store.get")
        except NotFoundError:
            logger.info("echo_not_found", detail="assuming it was deleted")
            return ReconcileResult.done()

        phase = echo.status.observed_phase
        logger.debug("echo_fetched", phase=echo.status.phase or None, message=echo.spec.message)

        if isinstance(phase, EchoPhase) and phase.is_terminal:
            logger.debug("echo_terminal", phase=phase.value)
            return ReconcileResult.done()

        observed: JobStatus | None = None
        if phase is EchoPhase.RUNNING:
            observed = await self._observe_job(echo)

        decision = decide(key, phase, echo.spec, echo.status, observed, self._clock())

        if decision.effect is not None:
            await self._create_job(echo, decision.effect)

        if decision.status != echo.status:
            try:
                await call_with_deadline(
                    self._store.update_status(echo.with_status(decision.status)),
                    self._call_timeout,
                    "store.update_status",
                )
            except ConflictError as exc:
                logger.debug("status_conflict", detail=str(exc))
                return ReconcileResult.done()
            except NotFoundError:
                logger.info("echo_deleted_during_pass")
                return ReconcileResult.done()
            logger.info(
                "status_updated",
                phase=decision.status.phase,
                previous_phase=echo.status.phase or None,
                status_message=decision.status.message,
            )

        return self._result(decision)

    async def _observe_job(self, echo: Echo) -> JobStatus:
        job_name = echo.status.job_ref or job_name_for(echo.key)
        status = await call_with_deadline(
            self._backend.get(echo.metadata.namespace, job_name),
            self._call_timeout,
            "backend.get",
        )
        logger.debug("job_observed", job=job_name, state=status.state.value)
        return status

    async def _create_job(self, echo: Echo, effect: CreateJob) -> None:
        request = self._template.request_for(echo, effect)
        try:
            await call_with_deadline(
                self._backend.create(request), self._call_timeout, "backend.create"
            )
        except AlreadyExistsError:
            existing = await call_with_deadline(
                self._backend.get(request.namespace, effect.name),
                self._call_timeout,
                "backend.get",
            )
            uid = echo.metadata.uid
            if existing.owner_uid and uid and existing.owner_uid != uid:
                raise ForeignJobError(effect.name, existing.owner_uid) from None
            logger.info("job_already_exists", job=effect.name)
            return
        logger.info("job_created", job=effect.name, image=request.image)

    def _result(self, decision: Decision) -> ReconcileResult:
        kind = decision.requeue.kind
        if kind is RequeueKind.BACKOFF:
            raise LostJobError(decision.status.job_ref, decision.requeue.reason)
        if kind is RequeueKind.IMMEDIATE:
            return ReconcileResult.immediately()
        if kind is RequeueKind.POLL:
            return ReconcileResult.after(self._poll_interval)
        return ReconcileResult.done()
