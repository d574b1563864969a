"""
CLI: ``echo-operator run``: run the controller until interrupted.
"""

from __future__ import annotations

import asyncio
import signal

import typer

from echo_operator.cli.utils import build_clients, console, err_console, load_settings, wire_controller
from echo_operator.controller.manager import Controller, ControllerStats
from echo_operator.core.errors import ConfigError
from echo_operator.core.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def serve(controller: Controller) -> ControllerStats:
    """Run ``controller`` until SIGINT or SIGTERM."""
    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        loop.add_signal_handler(sig, controller.stop)
    try:
        await controller.run()
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
    return controller.stats


def run(
    backend: str | None = typer.Option(None, "--backend", "-b", help="kubernetes or memory"),
    namespace: str | None = typer.Option(None, "--namespace", "-n", help="Watch one namespace only"),
    workers: int | None = typer.Option(None, "--workers", "-w", help="Concurrent reconcile workers"),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR"),
) -> None:
    """Run the Echo controller.

    Settings come from ``ECHO_OPERATOR_*`` environment variables; the
    options above override them.

    Example::

        echo-operator run --namespace demo --workers 8
        ECHO_OPERATOR_BACKEND=memory echo-operator run
    """
    settings = load_settings(
        backend=backend, namespace=namespace, workers=workers, log_level=log_level
    )
    configure_logging(
        level=settings.log_level,
        json_format=settings.json_logs,
        service=settings.service_name,
    )

    try:
        store, job_backend = build_clients(settings)
    except ConfigError as exc:
        err_console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=2) from exc

    console.print(
        f"[bold green]Starting echo-operator[/bold green] "
        f"(backend={settings.backend}, workers={settings.workers}, "
        f"namespace={settings.namespace or 'all'})"
    )
    controller = wire_controller(settings, store, job_backend)
    stats = asyncio.run(serve(controller))
    console.print(f"[yellow]Controller stopped[/yellow] {stats.to_dict()}")
