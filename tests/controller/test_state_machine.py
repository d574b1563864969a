"""Tests for the Echo phase state machine.

decide() is pure, so every case here runs without a store or backend:
the transition table, requeue directives, status narrative, conditions,
determinism, and the derived job name.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta

import pytest

from echo_operator.api.v1alpha1 import (
    ConditionStatus,
    EchoPhase,
    EchoSpec,
    EchoStatus,
    ObjectKey,
    UnrecognizedPhase,
    find_condition,
    parse_phase,
)
from echo_operator.controller.state_machine import (
    JOB_NAME_PREFIX,
    MAX_NAME_LENGTH,
    CreateJob,
    Reason,
    RequeueKind,
    decide,
    job_name_for,
)
from echo_operator.runtimes._types import JobState, JobStatus

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)
KEY = ObjectKey("default", "hello")
SPEC = EchoSpec(message="hello")

ALL_OBSERVED = [None, *(JobStatus(state) for state in JobState)]
ALL_PHASES = [None, *EchoPhase, UnrecognizedPhase("Bogus")]

ALLOWED = {
    (None, EchoPhase.PENDING),
    (EchoPhase.PENDING, EchoPhase.RUNNING),
    (EchoPhase.RUNNING, EchoPhase.RUNNING),
    (EchoPhase.RUNNING, EchoPhase.COMPLETED),
    (EchoPhase.RUNNING, EchoPhase.FAILED),
    (EchoPhase.COMPLETED, EchoPhase.COMPLETED),
    (EchoPhase.FAILED, EchoPhase.FAILED),
}

DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


def _status_for(phase) -> EchoStatus:
    if phase is None:
        return EchoStatus()
    raw = phase.raw if isinstance(phase, UnrecognizedPhase) else phase.value
    job_ref = "echo-job-hello" if phase in (EchoPhase.RUNNING, EchoPhase.COMPLETED, EchoPhase.FAILED) else ""
    return EchoStatus(phase=raw, job_ref=job_ref, message="previous")


def _running_status() -> EchoStatus:
    return decide(KEY, EchoPhase.PENDING, SPEC, EchoStatus(phase="Pending"), None, NOW).status


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


class TestUnobserved:
    """∅ → Pending."""

    def test_moves_to_pending(self) -> None:
        decision = decide(KEY, None, SPEC, EchoStatus(), None, NOW)
        assert decision.phase is EchoPhase.PENDING
        assert decision.status.phase == "Pending"
        assert decision.status.message == "Echo resource created, preparing to execute"
        assert decision.effect is None
        assert decision.requeue.kind is RequeueKind.IMMEDIATE

    def test_sets_initial_conditions(self) -> None:
        status = decide(KEY, None, SPEC, EchoStatus(), None, NOW).status
        ready = find_condition(status.conditions, "Ready")
        progressing = find_condition(status.conditions, "Progressing")
        assert ready is not None and ready.status is ConditionStatus.FALSE
        assert progressing is not None and progressing.status is ConditionStatus.TRUE
        assert ready.reason == Reason.INITIALIZED
        assert ready.last_transition_time == NOW


class TestPending:
    """Pending → Running, creating the job exactly when none exists."""

    def test_creates_job_with_derived_name(self) -> None:
        decision = decide(KEY, EchoPhase.PENDING, SPEC, EchoStatus(phase="Pending"), None, NOW)
        assert decision.effect == CreateJob(name="echo-job-hello", message="hello")
        assert decision.phase is EchoPhase.RUNNING
        assert decision.status.job_ref == "echo-job-hello"
        assert decision.status.last_execution_time == NOW
        assert decision.status.message == "Job echo-job-hello created for message: hello"
        assert decision.requeue.kind is RequeueKind.IMMEDIATE

    def test_absent_job_is_created(self) -> None:
        decision = decide(
            KEY, EchoPhase.PENDING, SPEC, EchoStatus(phase="Pending"), JobStatus.absent(), NOW
        )
        assert isinstance(decision.effect, CreateJob)

    @pytest.mark.parametrize("state", [JobState.RUNNING, JobState.SUCCEEDED, JobState.FAILED])
    def test_existing_job_is_not_created_again(self, state: JobState) -> None:
        """A duplicate notification for an already-started job is a no-op."""
        decision = decide(
            KEY, EchoPhase.PENDING, SPEC, EchoStatus(phase="Pending"), JobStatus(state), NOW
        )
        assert decision.effect is None
        assert decision.phase is EchoPhase.RUNNING
        assert decision.status.job_ref == "echo-job-hello"

    def test_repeated_pending_evaluation_uses_same_name(self) -> None:
        first = decide(KEY, EchoPhase.PENDING, SPEC, EchoStatus(phase="Pending"), None, NOW)
        second = decide(
            KEY, EchoPhase.PENDING, SPEC, EchoStatus(phase="Pending"), None, NOW + timedelta(minutes=5)
        )
        assert first.effect == second.effect


class TestRunning:
    """Running → Running / Completed / Failed depending on the job."""

    @pytest.mark.parametrize("observed", [None, JobStatus(JobState.RUNNING)])
    def test_running_job_polls(self, observed) -> None:
        decision = decide(KEY, EchoPhase.RUNNING, SPEC, _running_status(), observed, NOW)
        assert decision.phase is EchoPhase.RUNNING
        assert decision.requeue.kind is RequeueKind.POLL
        assert decision.status.message == "Job echo-job-hello is running for message: hello"
        assert decision.effect is None

    def test_succeeded_job_completes(self) -> None:
        decision = decide(
            KEY, EchoPhase.RUNNING, SPEC, _running_status(), JobStatus(JobState.SUCCEEDED), NOW
        )
        assert decision.phase is EchoPhase.COMPLETED
        assert decision.status.phase == "Completed"
        assert "hello" in decision.status.message
        assert decision.requeue.kind is RequeueKind.NONE
        ready = find_condition(decision.status.conditions, "Ready")
        assert ready is not None and ready.status is ConditionStatus.TRUE

    def test_failed_job_fails_with_detail(self) -> None:
        observed = JobStatus(JobState.FAILED, message="BackoffLimitExceeded")
        decision = decide(KEY, EchoPhase.RUNNING, SPEC, _running_status(), observed, NOW)
        assert decision.phase is EchoPhase.FAILED
        assert decision.requeue.kind is RequeueKind.NONE
        assert "BackoffLimitExceeded" in decision.status.message
        failed = find_condition(decision.status.conditions, "Failed")
        assert failed is not None
        assert failed.status is ConditionStatus.TRUE
        assert failed.reason == Reason.JOB_FAILED

    def test_absent_job_is_an_error_not_a_recreate(self) -> None:
        decision = decide(KEY, EchoPhase.RUNNING, SPEC, _running_status(), JobStatus.absent(), NOW)
        assert decision.phase is EchoPhase.RUNNING
        assert decision.status.phase == "Running"
        assert decision.effect is None
        assert decision.is_error
        assert decision.requeue.kind is RequeueKind.BACKOFF
        progressing = find_condition(decision.status.conditions, "Progressing")
        assert progressing is not None
        assert progressing.status is ConditionStatus.UNKNOWN
        assert progressing.reason == Reason.JOB_NOT_FOUND

    def test_job_ref_is_kept_once_assigned(self) -> None:
        status = EchoStatus(phase="Running", job_ref="echo-job-custom")
        decision = decide(KEY, EchoPhase.RUNNING, SPEC, status, JobStatus(JobState.SUCCEEDED), NOW)
        assert decision.status.job_ref == "echo-job-custom"
        assert "echo-job-custom" in decision.status.message

    def test_unchanged_job_yields_unchanged_status(self) -> None:
        """Re-polling a running job produces an equal status: no write."""
        running = JobStatus(JobState.RUNNING)
        first = decide(KEY, EchoPhase.RUNNING, SPEC, _running_status(), running, NOW)
        second = decide(
            KEY, EchoPhase.RUNNING, SPEC, first.status, running, NOW + timedelta(seconds=30)
        )
        assert second.status == first.status


class TestTerminal:
    """Completed and Failed never change and never requeue."""

    @pytest.mark.parametrize("phase", [EchoPhase.COMPLETED, EchoPhase.FAILED])
    @pytest.mark.parametrize("observed", ALL_OBSERVED)
    def test_terminal_is_inert(self, phase: EchoPhase, observed) -> None:
        status = _status_for(phase)
        decision = decide(KEY, phase, SPEC, status, observed, NOW)
        assert decision.phase is phase
        assert decision.status == status
        assert decision.effect is None
        assert decision.requeue.kind is RequeueKind.NONE


class TestUnrecognizedPhase:
    """Corrupted phase values reset to Pending."""

    def test_bogus_phase_resets_to_pending(self) -> None:
        status = EchoStatus(phase="Bogus")
        decision = decide(KEY, parse_phase("Bogus"), SPEC, status, None, NOW)
        assert decision.phase is EchoPhase.PENDING
        assert decision.status.phase == "Pending"
        assert "Bogus" in decision.status.message
        assert decision.requeue.kind is RequeueKind.IMMEDIATE
        ready = find_condition(decision.status.conditions, "Ready")
        assert ready is not None and ready.reason == Reason.PHASE_RESET


# ---------------------------------------------------------------------------
# Properties over the whole input space
# ---------------------------------------------------------------------------


class TestProperties:
    """Determinism and monotonicity for every (phase, job state) pair."""

    @pytest.mark.parametrize("phase", ALL_PHASES)
    @pytest.mark.parametrize("observed", ALL_OBSERVED)
    def test_deterministic(self, phase, observed) -> None:
        status = _status_for(phase)
        first = decide(KEY, phase, SPEC, status, observed, NOW)
        second = decide(KEY, phase, SPEC, status, observed, NOW)
        assert first == second

    @pytest.mark.parametrize("phase", ALL_PHASES)
    @pytest.mark.parametrize("observed", ALL_OBSERVED)
    def test_transitions_follow_the_table(self, phase, observed) -> None:
        decision = decide(KEY, phase, SPEC, _status_for(phase), observed, NOW)
        if isinstance(phase, UnrecognizedPhase):
            assert decision.phase is EchoPhase.PENDING
        else:
            assert (phase, decision.phase) in ALLOWED

    @pytest.mark.parametrize("phase", ALL_PHASES)
    @pytest.mark.parametrize("observed", ALL_OBSERVED)
    def test_stored_phase_matches_decision(self, phase, observed) -> None:
        decision = decide(KEY, phase, SPEC, _status_for(phase), observed, NOW)
        assert decision.status.phase == decision.phase.value

    @pytest.mark.parametrize("phase", ALL_PHASES)
    @pytest.mark.parametrize("observed", ALL_OBSERVED)
    def test_only_pending_creates(self, phase, observed) -> None:
        decision = decide(KEY, phase, SPEC, _status_for(phase), observed, NOW)
        if decision.effect is not None:
            assert phase is EchoPhase.PENDING


# ---------------------------------------------------------------------------
# Job naming
# ---------------------------------------------------------------------------


class TestJobName:
    """job_name_for() is stable, valid, and collision-resistant."""

    def test_short_name(self) -> None:
        assert job_name_for(ObjectKey("default", "hello")) == "echo-job-hello"

    def test_stable(self) -> None:
        key = ObjectKey("team-a", "nightly-report")
        assert job_name_for(key) == job_name_for(ObjectKey("team-a", "nightly-report"))

    def test_long_name_fits_limit(self) -> None:
        name = job_name_for(ObjectKey("default", "x" * 120))
        assert len(name) <= MAX_NAME_LENGTH
        assert name.startswith(JOB_NAME_PREFIX)
        assert DNS_LABEL.match(name)

    def test_long_names_sharing_a_prefix_differ(self) -> None:
        base = "a" * 70
        assert job_name_for(ObjectKey("default", base + "1")) != job_name_for(
            ObjectKey("default", base + "2")
        )

    def test_long_names_in_different_namespaces_differ(self) -> None:
        name = "b" * 70
        assert job_name_for(ObjectKey("ns-one", name)) != job_name_for(ObjectKey("ns-two", name))

    def test_invalid_characters_are_normalized(self) -> None:
        name = job_name_for(ObjectKey("default", "Hello.World"))
        assert DNS_LABEL.match(name)
        assert name.startswith("echo-job-hello-world-")

    def test_exactly_at_limit_is_not_hashed(self) -> None:
        fits = "c" * (MAX_NAME_LENGTH - len(JOB_NAME_PREFIX))
        assert job_name_for(ObjectKey("default", fits)) == JOB_NAME_PREFIX + fits
