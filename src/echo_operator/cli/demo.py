"""
CLI: ``echo-operator demo``: drive one Echo end to end in memory.

Runs the real controller, reconciler and work queue against the
in-memory store and job backend, records every status write for the
Echo, and prints the resulting phase timeline.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

import typer
from rich.table import Table

from echo_operator.api.v1alpha1 import MESSAGE_MAX_LENGTH, Echo, EchoPhase
from echo_operator.cli.utils import console, err_console, load_settings, wire_controller
from echo_operator.controller.triggers import EventType
from echo_operator.core.logging import configure_logging
from echo_operator.core.settings import OperatorSettings
from echo_operator.runtimes._types import JobState
from echo_operator.runtimes.memory import InMemoryJobBackend
from echo_operator.store.memory import InMemoryEchoStore


@dataclass(frozen=True)
class TimelineEntry:
    elapsed: float
    phase: str
    message: str


async def run_demo(
    settings: OperatorSettings,
    *,
    name: str,
    namespace: str,
    message: str,
    outcome: JobState,
    timeout: float = 30.0,
) -> tuple[Echo, list[TimelineEntry]]:
    """Create one Echo and run the controller until it reaches a terminal phase.

    Raises:
        TimeoutError: The Echo did not finish within ``timeout`` seconds.
    """
    backend = InMemoryJobBackend(auto_complete=outcome, complete_after=1)
    store = InMemoryEchoStore(job_backend=backend)
    controller = wire_controller(settings, store, backend)
    events = store.watch()

    timeline: list[TimelineEntry] = []
    started = time.monotonic()
    runner = asyncio.create_task(controller.run())
    try:
        echo = await store.create(Echo.new(name, message, namespace))
        async with asyncio.timeout(timeout):
            async for event in events:
                if event.key != echo.key or event.type is not EventType.MODIFIED:
                    continue
                if event.status == event.old_status:
                    continue
                timeline.append(
                    TimelineEntry(
                        elapsed=time.monotonic() - started,
                        phase=event.status.phase,
                        message=event.status.message,
                    )
                )
                phase = event.status.observed_phase
                if isinstance(phase, EchoPhase) and phase.is_terminal:
                    break
    finally:
        controller.stop()
        await runner
        store.close()
        backend.close()
    return await store.get(echo.key), timeline


def demo(
    message: str = typer.Option(..., "--message", "-m", help="Message to echo"),
    name: str = typer.Option("hello", "--name", help="Echo resource name"),
    namespace: str = typer.Option("default", "--namespace", "-n"),
    outcome: str = typer.Option("succeeded", "--outcome", help="Job outcome: succeeded or failed"),
    poll_interval: float = typer.Option(0.2, "--poll-interval", help="Seconds between job polls"),
    timeout: float = typer.Option(30.0, "--timeout", help="Give up after this many seconds"),
    log_level: str = typer.Option("WARNING", "--log-level"),
) -> None:
    """Reconcile one Echo against the in-memory backend and print its timeline.

    Example::

        echo-operator demo --message "hello world"
        echo-operator demo --message boom --outcome failed
    """
    if not message or len(message) > MESSAGE_MAX_LENGTH:
        raise typer.BadParameter(
            f"message must be 1-{MESSAGE_MAX_LENGTH} characters", param_hint="--message"
        )
    if outcome not in (JobState.SUCCEEDED.value, JobState.FAILED.value):
        raise typer.BadParameter("expected 'succeeded' or 'failed'", param_hint="--outcome")

    settings = load_settings(backend="memory", poll_interval=poll_interval, log_level=log_level)
    configure_logging(level=settings.log_level, json_format=False, service=settings.service_name)

    try:
        echo, timeline = asyncio.run(
            run_demo(
                settings,
                name=name,
                namespace=namespace,
                message=message,
                outcome=JobState(outcome),
                timeout=timeout,
            )
        )
    except TimeoutError:
        err_console.print(f"[red]Echo {namespace}/{name} did not finish within {timeout}s[/red]")
        raise typer.Exit(code=1)

    table = Table(title=f"Echo {echo.key}")
    table.add_column("t+", justify="right")
    table.add_column("Phase")
    table.add_column("Message")
    for entry in timeline:
        table.add_row(f"{entry.elapsed:.2f}s", entry.phase, entry.message)
    console.print(table)

    color = "green" if echo.status.phase == EchoPhase.COMPLETED.value else "red"
    console.print(
        f"[bold {color}]{echo.status.phase}[/bold {color}] "
        f"job={echo.status.job_ref} conditions="
        + ", ".join(f"{c.type}={c.status.value}" for c in echo.status.conditions)
    )
