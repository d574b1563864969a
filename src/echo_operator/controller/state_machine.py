"""Phase state machine: pure decision logic for one Echo.

``decide()`` maps (observed phase, spec, observed job status) to a
:class:`Decision`: the next status, the single side effect to apply, and
how to requeue. It performs no I/O and reads no clock; the caller passes
``now`` explicitly, so identical inputs always give identical decisions.

Transition table::

    phase          observed job        effect      next        requeue
    ─────────────  ──────────────────  ──────────  ──────────  ─────────
    ∅              -                   -           Pending     immediate
    Pending        not queried/absent  CreateJob   Running     immediate
    Pending        exists              -           Running     immediate
    Running        running / unknown   -           Running     poll
    Running        succeeded           -           Completed   none
    Running        failed              -           Failed      none
    Running        absent              -           Running     backoff (error)
    Completed      any                 -           Completed   none
    Failed         any                 -           Failed      none
    unrecognized   -                   -           Pending     immediate

A lost job is never re-created: the job may have had side effects, so
the existence check is retried with backoff instead.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from echo_operator.api.v1alpha1 import (
    Condition,
    ConditionStatus,
    ConditionType,
    EchoPhase,
    EchoSpec,
    EchoStatus,
    ObjectKey,
    ObservedPhase,
    UnrecognizedPhase,
    set_condition,
)
from echo_operator.runtimes._types import JobState, JobStatus

JOB_NAME_PREFIX = "echo-job-"
MAX_NAME_LENGTH = 63
_HASH_LENGTH = 10
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]")


class Reason:
    """Condition reasons, CamelCase as the API conventions require."""

    INITIALIZED = "Initialized"
    PHASE_RESET = "PhaseReset"
    JOB_CREATED = "JobCreated"
    JOB_RUNNING = "JobRunning"
    JOB_SUCCEEDED = "JobSucceeded"
    JOB_FAILED = "JobFailed"
    JOB_NOT_FOUND = "JobNotFound"


class RequeueKind(str, Enum):
    NONE = "none"
    IMMEDIATE = "immediate"
    POLL = "poll"
    BACKOFF = "backoff"


@dataclass(frozen=True)
class Requeue:
    """What the scheduler should do with this key after the pass.

    ``BACKOFF`` means the pass ended in an operational error: the driver
    reports it upward and the controller applies per-key error backoff.
    """

    kind: RequeueKind
    reason: str = ""

    @classmethod
    def none(cls) -> Requeue:
        return cls(RequeueKind.NONE)

    @classmethod
    def immediate(cls) -> Requeue:
        return cls(RequeueKind.IMMEDIATE)

    @classmethod
    def poll(cls) -> Requeue:
        return cls(RequeueKind.POLL)

    @classmethod
    def backoff(cls, reason: str) -> Requeue:
        return cls(RequeueKind.BACKOFF, reason)


@dataclass(frozen=True)
class CreateJob:
    """Side effect: create the Echo's job (idempotent by name)."""

    name: str
    message: str


@dataclass(frozen=True)
class Decision:
    """Outcome of one decision: next status, effect, requeue directive."""

    phase: EchoPhase
    status: EchoStatus
    effect: CreateJob | None
    requeue: Requeue

    @property
    def is_error(self) -> bool:
        return self.requeue.kind is RequeueKind.BACKOFF


def job_name_for(key: ObjectKey) -> str:
    """Deterministic job name for an Echo.

    ``echo-job-<name>`` when it fits the 63-character object-name limit.
    Longer names are truncated and suffixed with a hash of the full
    namespace/name identity, so distinct Echoes never share a job.

    Example:
        >>> job_name_for(ObjectKey("default", "hello"))
        'echo-job-hello'
    """
    slug = _INVALID_NAME_CHARS.sub("-", key.name.lower())
    name = f"{JOB_NAME_PREFIX}{slug}"
    if len(name) <= MAX_NAME_LENGTH and slug == key.name:
        return name
    digest = hashlib.sha256(str(key).encode()).hexdigest()[:_HASH_LENGTH]
    room = MAX_NAME_LENGTH - len(JOB_NAME_PREFIX) - _HASH_LENGTH - 1
    return f"{JOB_NAME_PREFIX}{slug[:room].strip('-')}-{digest}"


def _condition(type_: ConditionType, status: ConditionStatus, reason: str, message: str) -> Condition:
    return Condition(type=type_.value, status=status, reason=reason, message=message)


def _with_conditions(status: EchoStatus, now: datetime, *conditions: Condition) -> EchoStatus:
    merged = status.conditions
    for condition in conditions:
        merged = set_condition(merged, condition, now)
    return replace(status, conditions=merged)


def _to_pending(status: EchoStatus, message: str, reason: str, now: datetime) -> Decision:
    pending = replace(status, phase=EchoPhase.PENDING.value, message=message)
    pending = _with_conditions(
        pending,
        now,
        _condition(ConditionType.READY, ConditionStatus.FALSE, reason, message),
        _condition(ConditionType.PROGRESSING, ConditionStatus.TRUE, reason, message),
    )
    return Decision(EchoPhase.PENDING, pending, None, Requeue.immediate())


def _decide_pending(
    status: EchoStatus,
    spec: EchoSpec,
    job_name: str,
    observed: JobStatus | None,
    now: datetime,
) -> Decision:
    message = f"Job {job_name} created for message: {spec.message}"
    running = replace(
        status,
        phase=EchoPhase.RUNNING.value,
        job_ref=job_name,
        message=message,
        last_execution_time=now,
    )
    running = _with_conditions(
        running,
        now,
        _condition(ConditionType.READY, ConditionStatus.FALSE, Reason.JOB_CREATED, message),
        _condition(ConditionType.PROGRESSING, ConditionStatus.TRUE, Reason.JOB_CREATED, message),
    )
    if observed is not None and observed.state is not JobState.ABSENT:
        # Duplicate notification: the job is already there.
        return Decision(EchoPhase.RUNNING, running, None, Requeue.immediate())
    return Decision(
        EchoPhase.RUNNING,
        running,
        CreateJob(name=job_name, message=spec.message),
        Requeue.immediate(),
    )


def _decide_running(
    status: EchoStatus,
    spec: EchoSpec,
    job_name: str,
    observed: JobStatus | None,
    now: datetime,
) -> Decision:
    state = observed.state if observed is not None else JobState.RUNNING
    detail = f": {observed.message}" if observed is not None and observed.message else ""

    if state is JobState.SUCCEEDED:
        message = f"Job {job_name} completed successfully. Message '{spec.message}' was echoed."
        completed = _with_conditions(
            replace(status, phase=EchoPhase.COMPLETED.value, job_ref=job_name, message=message),
            now,
            _condition(ConditionType.READY, ConditionStatus.TRUE, Reason.JOB_SUCCEEDED, message),
            _condition(ConditionType.PROGRESSING, ConditionStatus.FALSE, Reason.JOB_SUCCEEDED, message),
        )
        return Decision(EchoPhase.COMPLETED, completed, None, Requeue.none())

    if state is JobState.FAILED:
        message = f"Job {job_name} failed to echo message '{spec.message}'{detail}"
        failed = _with_conditions(
            replace(status, phase=EchoPhase.FAILED.value, job_ref=job_name, message=message),
            now,
            _condition(ConditionType.READY, ConditionStatus.FALSE, Reason.JOB_FAILED, message),
            _condition(ConditionType.PROGRESSING, ConditionStatus.FALSE, Reason.JOB_FAILED, message),
            _condition(ConditionType.FAILED, ConditionStatus.TRUE, Reason.JOB_FAILED, message),
        )
        return Decision(EchoPhase.FAILED, failed, None, Requeue.none())

    if state is JobState.ABSENT:
        message = f"Job {job_name} not found; waiting for it to reappear"
        lost = _with_conditions(
            replace(status, job_ref=job_name, message=message),
            now,
            _condition(ConditionType.PROGRESSING, ConditionStatus.UNKNOWN, Reason.JOB_NOT_FOUND, message),
        )
        return Decision(EchoPhase.RUNNING, lost, None, Requeue.backoff(message))

    message = f"Job {job_name} is running for message: {spec.message}"
    running = _with_conditions(
        replace(status, job_ref=job_name, message=message),
        now,
        _condition(ConditionType.READY, ConditionStatus.FALSE, Reason.JOB_RUNNING, message),
        _condition(ConditionType.PROGRESSING, ConditionStatus.TRUE, Reason.JOB_RUNNING, message),
    )
    return Decision(EchoPhase.RUNNING, running, None, Requeue.poll())


def decide(
    key: ObjectKey,
    phase: ObservedPhase,
    spec: EchoSpec,
    status: EchoStatus,
    observed: JobStatus | None,
    now: datetime,
) -> Decision:
    """Decide the next step for one Echo.

    Args:
        key: The Echo's identity; the job name is derived from it.
        phase: The classified ``status.phase``.
        spec: Desired state.
        status: Current stored status; the returned status is derived
            from it, so unchanged inputs yield an equal status.
        observed: Job status, when the caller queried the backend.
            ``None`` means "not queried" and is treated as still running
            in the Running phase.
        now: Timestamp for transition times and ``lastExecutionTime``.
    """
    job_name = status.job_ref or job_name_for(key)

    match phase:
        case None:
            return _to_pending(
                status, "Echo resource created, preparing to execute", Reason.INITIALIZED, now
            )
        case EchoPhase.PENDING:
            return _decide_pending(status, spec, job_name, observed, now)
        case EchoPhase.RUNNING:
            return _decide_running(status, spec, job_name, observed, now)
        case EchoPhase.COMPLETED | EchoPhase.FAILED:
            return Decision(phase, status, None, Requeue.none())
        case UnrecognizedPhase(raw=raw):
            return _to_pending(
                status,
                f"Unrecognized phase {raw!r}; resetting to Pending",
                Reason.PHASE_RESET,
                now,
            )
    raise AssertionError(f"unhandled phase {phase!r}")
