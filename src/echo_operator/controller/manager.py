"""Controller: worker pool draining the work queue.

The controller wires the pieces together:

.. code-block:: text

    EventSource ──► Binding.keys_for() ──► WorkQueue ──► worker N ──► EchoReconciler
        (watch)        (trigger map)        (dedup)       (per key)        │
                                               ▲                          │
                                               └──── requeue directive ───┘

Requeue translation:

- reconcile raised      → ``add_rate_limited`` (per-key exponential backoff)
- ``requeue_after``     → ``forget`` + ``add_after``
- ``requeue``           → ``forget`` + ``add``
- neither               → ``forget``

Distinct keys are reconciled concurrently by ``workers`` tasks; the queue
guarantees a key is never held by two workers at once. No lock is held
across I/O.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from echo_operator.api.v1alpha1 import ObjectKey
from echo_operator.controller.queue import WorkQueue
from echo_operator.controller.reconciler import EchoReconciler, JobTemplate, ReconcileResult
from echo_operator.controller.triggers import Binding, EventSource
from echo_operator.core.errors import categorize_error, is_retryable
from echo_operator.core.logging import LogContext, get_logger
from echo_operator.core.settings import OperatorSettings
from echo_operator.execution.retry import ExponentialBackoff, RateLimiter
from echo_operator.execution.timeout import with_deadline_async
from echo_operator.runtimes._types import JobBackend
from echo_operator.store._types import EchoStore

logger = get_logger(__name__)


@dataclass
class ControllerStats:
    """Aggregate counters for one controller."""

    reconciles: int = 0
    errors: int = 0
    requeues: int = 0
    events: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "reconciles": self.reconciles,
            "errors": self.errors,
            "requeues": self.requeues,
            "events": self.events,
        }


class Controller:
    """Runs reconcile workers fed by watch bindings."""

    def __init__(
        self,
        reconciler: EchoReconciler,
        *,
        name: str = "echo",
        workers: int = 4,
        reconcile_timeout: float = 60.0,
        queue: WorkQueue[ObjectKey] | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.name = name
        self.queue: WorkQueue[ObjectKey] = queue if queue is not None else WorkQueue()
        self.stats = ControllerStats()
        self._reconciler = reconciler
        self._workers = workers
        self._reconcile_timeout = reconcile_timeout
        self._watches: list[tuple[EventSource, Binding]] = []
        self._stopping = asyncio.Event()

    def watch(self, source: EventSource, binding: Binding) -> Controller:
        """Register a trigger: events from ``source`` routed by ``binding``."""
        self._watches.append((source, binding))
        return self

    def enqueue(self, key: ObjectKey) -> None:
        self.queue.add(key)

    async def run(self) -> None:
        """Run until :meth:`stop` is called.

        Workers finish their current pass before the method returns.
        """
        logger.info(
            "controller_starting",
            controller=self.name,
            workers=self._workers,
            watches=[binding.kind for _, binding in self._watches],
        )
        pumps = [
            asyncio.create_task(self._pump(source, binding), name=f"{self.name}-watch-{binding.kind}")
            for source, binding in self._watches
        ]
        workers = [
            asyncio.create_task(self._worker(i), name=f"{self.name}-worker-{i}")
            for i in range(self._workers)
        ]
        try:
            await self._stopping.wait()
        finally:
            self.queue.shut_down()
            for pump in pumps:
                pump.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            await asyncio.gather(*workers)
            logger.info("controller_stopped", controller=self.name, **self.stats.to_dict())

    def stop(self) -> None:
        """Request shutdown. Calling it before :meth:`run` makes ``run`` return at once."""
        self._stopping.set()

    async def _pump(self, source: EventSource, binding: Binding) -> None:
        async for event in source:
            for key in binding.keys_for(event):
                self.stats.events += 1
                logger.debug("event_received", echo=str(key), reason=event.reason, source=event.name)
                self.queue.add(key)
        logger.info("watch_closed", kind=binding.kind)

    async def _worker(self, worker_id: int) -> None:
        while True:
            key = await self.queue.get()
            if key is None:
                return
            try:
                await self.process(key, worker_id)
            finally:
                self.queue.done(key)

    async def process(self, key: ObjectKey, worker_id: int = 0) -> ReconcileResult | None:
        """Run one pass for ``key`` and schedule its requeue.

        Returns the pass result, or ``None`` when the pass raised.
        """
        async with LogContext(echo=str(key), worker=worker_id):
            self.stats.reconciles += 1
            logger.debug("reconcile_started")
            try:
                async with with_deadline_async(self._reconcile_timeout, f"reconcile {key}"):
                    result = await self._reconciler.reconcile(key)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.stats.errors += 1
                delay = self.queue.add_rate_limited(key)
                if is_retryable(exc):
                    logger.warning(
                        "reconcile_failed",
                        error=str(exc),
                        category=categorize_error(exc).value,
                        retry_in=round(delay, 3),
                        attempts=self.queue.num_requeues(key),
                    )
                else:
                    logger.error("reconcile_error", retry_in=round(delay, 3), exc_info=exc)
                return None

            if result.requeue_after is not None:
                self.queue.forget(key)
                self.queue.add_after(key, result.requeue_after)
                self.stats.requeues += 1
            elif result.requeue:
                self.queue.forget(key)
                self.queue.add(key)
                self.stats.requeues += 1
            else:
                self.queue.forget(key)
            logger.debug(
                "reconcile_finished",
                requeue=result.requeue,
                requeue_after=result.requeue_after,
            )
            return result


def build_controller(
    settings: OperatorSettings,
    store: EchoStore,
    backend: JobBackend,
) -> Controller:
    """Assemble reconciler, rate-limited queue and controller from settings."""
    reconciler = EchoReconciler(
        store,
        backend,
        poll_interval=settings.poll_interval,
        call_timeout=settings.call_timeout,
        template=JobTemplate(
            image=settings.job_image,
            backoff_limit=settings.job_backoff_limit,
            ttl_seconds_after_finished=settings.job_ttl_seconds_after_finished,
            active_deadline_seconds=settings.job_active_deadline_seconds,
        ),
    )
    queue: WorkQueue[ObjectKey] = WorkQueue(
        RateLimiter(
            ExponentialBackoff(
                base_delay=settings.backoff_base,
                max_delay=settings.backoff_max,
                multiplier=settings.backoff_multiplier,
            )
        )
    )
    return Controller(
        reconciler,
        workers=settings.workers,
        reconcile_timeout=settings.reconcile_timeout,
        queue=queue,
    )
