"""Tests for the Controller worker pool.

The first groups drive ``Controller.process`` with a scripted reconciler
to pin down requeue translation. The integration group runs the full
pool over the in-memory store and job backend.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import pytest

from echo_operator.api.v1alpha1 import Echo, EchoPhase, ObjectKey
from echo_operator.controller.manager import Controller, ControllerStats, build_controller
from echo_operator.controller.queue import WorkQueue
from echo_operator.controller.reconciler import ReconcileResult
from echo_operator.controller.triggers import for_resource, owns
from echo_operator.core.errors import BackendUnavailableError
from echo_operator.core.settings import OperatorSettings
from echo_operator.execution.retry import ConstantBackoff, RateLimiter
from echo_operator.runtimes._types import JOB_KIND, JobState
from echo_operator.runtimes.memory import InMemoryJobBackend
from echo_operator.store.memory import InMemoryEchoStore

KEY = ObjectKey("default", "hello")


class ScriptedReconciler:
    """Returns (or raises) the scripted outcomes in order."""

    def __init__(self, *outcomes: ReconcileResult | BaseException | Callable[[], object]) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[ObjectKey] = []

    async def reconcile(self, key: ObjectKey) -> ReconcileResult:
        self.calls.append(key)
        outcome = self.outcomes.pop(0)
        if callable(outcome) and not isinstance(outcome, ReconcileResult):
            return await outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _controller(reconciler, **kwargs) -> Controller:
    queue: WorkQueue[ObjectKey] = WorkQueue(RateLimiter(ConstantBackoff(0.01)))
    return Controller(reconciler, queue=queue, **kwargs)


def _fast_settings(**overrides) -> OperatorSettings:
    values = dict(
        backend="memory",
        workers=2,
        poll_interval=0.02,
        backoff_base=0.01,
        backoff_max=0.05,
    )
    values.update(overrides)
    return OperatorSettings(**values)


async def _wait_for(predicate: Callable[[], Awaitable[bool]], timeout: float = 5.0) -> None:
    async with asyncio.timeout(timeout):
        while not await predicate():
            await asyncio.sleep(0.01)


class TestRequeueTranslation:
    @pytest.mark.asyncio
    async def test_done_forgets(self) -> None:
        controller = _controller(ScriptedReconciler(ReconcileResult.done()))
        controller.queue.add_rate_limited(KEY)
        result = await controller.process(KEY)
        assert result == ReconcileResult.done()
        assert controller.queue.num_requeues(KEY) == 0
        assert controller.stats.requeues == 0

    @pytest.mark.asyncio
    async def test_requeue_adds_immediately(self) -> None:
        controller = _controller(ScriptedReconciler(ReconcileResult.immediately()))
        await controller.process(KEY)
        assert len(controller.queue) == 1
        assert controller.stats.requeues == 1

    @pytest.mark.asyncio
    async def test_requeue_after_adds_later(self) -> None:
        controller = _controller(ScriptedReconciler(ReconcileResult.after(0.02)))
        await controller.process(KEY)
        assert len(controller.queue) == 0
        await asyncio.sleep(0.06)
        assert len(controller.queue) == 1

    @pytest.mark.asyncio
    async def test_error_is_rate_limited(self) -> None:
        controller = _controller(
            ScriptedReconciler(BackendUnavailableError("down"), BackendUnavailableError("down"))
        )
        assert await controller.process(KEY) is None
        assert await controller.process(KEY) is None
        assert controller.queue.num_requeues(KEY) == 2
        assert controller.stats.errors == 2
        await asyncio.sleep(0.03)
        assert len(controller.queue) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_also_retried(self) -> None:
        controller = _controller(ScriptedReconciler(RuntimeError("bug")))
        assert await controller.process(KEY) is None
        assert controller.queue.num_requeues(KEY) == 1

    @pytest.mark.asyncio
    async def test_event_during_failed_pass_waits_for_backoff(self) -> None:
        """A status write made by the failing pass does not skip the delay."""

        async def write_then_fail() -> ReconcileResult:
            controller.enqueue(KEY)
            raise BackendUnavailableError("job lost")

        controller = _controller(ScriptedReconciler(write_then_fail))
        controller.queue.add(KEY)
        key = await controller.queue.get()
        await controller.process(key)
        controller.queue.done(key)

        assert len(controller.queue) == 0
        await asyncio.sleep(0.03)
        assert len(controller.queue) == 1

    @pytest.mark.asyncio
    async def test_success_resets_backoff(self) -> None:
        controller = _controller(
            ScriptedReconciler(BackendUnavailableError("down"), ReconcileResult.done())
        )
        await controller.process(KEY)
        await controller.process(KEY)
        assert controller.queue.num_requeues(KEY) == 0

    @pytest.mark.asyncio
    async def test_pass_deadline(self) -> None:
        async def hang() -> ReconcileResult:
            await asyncio.sleep(5)
            return ReconcileResult.done()

        controller = _controller(ScriptedReconciler(hang), reconcile_timeout=0.05)
        assert await controller.process(KEY) is None
        assert controller.stats.errors == 1

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> None:
        controller = _controller(ScriptedReconciler(asyncio.CancelledError()))
        with pytest.raises(asyncio.CancelledError):
            await controller.process(KEY)


class TestLifecycle:
    def test_rejects_zero_workers(self) -> None:
        with pytest.raises(ValueError):
            Controller(ScriptedReconciler(), workers=0)

    @pytest.mark.asyncio
    async def test_stop_before_run_returns(self) -> None:
        controller = _controller(ScriptedReconciler())
        controller.stop()
        await asyncio.wait_for(controller.run(), 1.0)

    @pytest.mark.asyncio
    async def test_enqueued_key_is_processed_once(self) -> None:
        reconciler = ScriptedReconciler(ReconcileResult.done())
        controller = _controller(reconciler, workers=3)
        for _ in range(3):
            controller.enqueue(KEY)
        runner = asyncio.create_task(controller.run())
        await asyncio.sleep(0.05)
        controller.stop()
        await runner
        assert reconciler.calls == [KEY]

    def test_keeps_given_empty_queue(self) -> None:
        queue: WorkQueue[ObjectKey] = WorkQueue()
        assert len(queue) == 0
        assert Controller(ScriptedReconciler(), queue=queue).queue is queue

    @pytest.mark.asyncio
    async def test_build_controller_applies_backoff_settings(self) -> None:
        backend = InMemoryJobBackend()
        settings = OperatorSettings(backend="memory", backoff_base=42.0, backoff_max=100.0, backoff_multiplier=2.0)
        controller = build_controller(settings, InMemoryEchoStore(job_backend=backend), backend)
        try:
            first = controller.queue.add_rate_limited(KEY)
            second = controller.queue.add_rate_limited(KEY)
            third = controller.queue.add_rate_limited(KEY)
        finally:
            controller.queue.shut_down()
        assert first == pytest.approx(42.0, rel=0.11)
        assert second == pytest.approx(84.0, rel=0.11)
        assert third <= 100.0

    def test_stats_dict(self) -> None:
        assert ControllerStats(reconciles=2).to_dict() == {
            "reconciles": 2,
            "errors": 0,
            "requeues": 0,
            "events": 0,
        }


@pytest.mark.integration
class TestControllerIntegration:
    """Full worker pool over in-memory collaborators."""

    @staticmethod
    def _wire(settings: OperatorSettings, backend: InMemoryJobBackend):
        store = InMemoryEchoStore(job_backend=backend)
        controller = build_controller(settings, store, backend)
        controller.watch(store.watch(), for_resource())
        controller.watch(backend.watch(), owns(JOB_KIND))
        return store, controller

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("outcome", "phase"),
        [(JobState.SUCCEEDED, EchoPhase.COMPLETED), (JobState.FAILED, EchoPhase.FAILED)],
    )
    async def test_echoes_reach_terminal_phase(self, outcome: JobState, phase: EchoPhase) -> None:
        backend = InMemoryJobBackend(auto_complete=outcome, complete_after=1)
        store, controller = self._wire(_fast_settings(), backend)
        runner = asyncio.create_task(controller.run())
        try:
            for name in ("one", "two", "three"):
                await store.create(Echo.new(name, f"message {name}"))

            async def settled() -> bool:
                echoes = await store.list()
                return all(e.status.phase == phase.value for e in echoes)

            await _wait_for(settled)
        finally:
            controller.stop()
            await runner

        names = sorted(r.name for r in backend.created)
        assert names == ["echo-job-one", "echo-job-three", "echo-job-two"]
        assert controller.stats.events > 0

    @pytest.mark.asyncio
    async def test_job_change_triggers_owner(self) -> None:
        backend = InMemoryJobBackend()
        store, controller = self._wire(_fast_settings(poll_interval=60.0), backend)
        runner = asyncio.create_task(controller.run())
        try:
            echo = await store.create(Echo.new("hello", "hello"))

            async def running() -> bool:
                return (await store.get(echo.key)).status.phase == "Running"

            await _wait_for(running)
            backend.set_state("default", "echo-job-hello", JobState.SUCCEEDED)

            async def completed() -> bool:
                return (await store.get(echo.key)).status.phase == "Completed"

            await _wait_for(completed, timeout=2.0)
        finally:
            controller.stop()
            await runner

    @pytest.mark.asyncio
    async def test_lost_job_backs_off_without_recreate(self) -> None:
        backend = InMemoryJobBackend()
        store, controller = self._wire(_fast_settings(), backend)
        runner = asyncio.create_task(controller.run())
        try:
            echo = await store.create(Echo.new("hello", "hello"))

            async def running() -> bool:
                return (await store.get(echo.key)).status.phase == "Running"

            await _wait_for(running)
            backend.evict("default", "echo-job-hello")

            async def retried() -> bool:
                return controller.stats.errors >= 2

            await _wait_for(retried)
        finally:
            controller.stop()
            await runner

        assert (await store.get(echo.key)).status.phase == "Running"
        assert backend.create_attempts == 1

    @pytest.mark.asyncio
    async def test_deleting_echo_collects_its_job(self) -> None:
        backend = InMemoryJobBackend()
        store, controller = self._wire(_fast_settings(), backend)
        runner = asyncio.create_task(controller.run())
        try:
            echo = await store.create(Echo.new("hello", "hello"))

            async def has_job() -> bool:
                return bool(backend.jobs())

            await _wait_for(has_job)
            await store.delete(echo.key)
            await asyncio.sleep(0.05)
        finally:
            controller.stop()
            await runner

        assert backend.jobs() == {}
