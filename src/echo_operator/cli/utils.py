"""
CLI utility helpers for settings loading and client wiring.
"""

from __future__ import annotations

from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console

from echo_operator.controller.manager import Controller, build_controller
from echo_operator.controller.triggers import for_resource, owns
from echo_operator.core.settings import OperatorSettings
from echo_operator.runtimes._types import JOB_KIND, JobState

console = Console()
err_console = Console(stderr=True)


def load_settings(**overrides: Any) -> OperatorSettings:
    """Read settings from the environment; CLI flags given as ``overrides`` win.

    ``None`` overrides are ignored so unset flags fall through to the
    environment. Validation errors end the command with exit code 2.
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        return OperatorSettings(**values)
    except ValidationError as exc:
        err_console.print(f"[red]Invalid configuration:[/red]\n{exc}")
        raise typer.Exit(code=2) from exc


def build_clients(settings: OperatorSettings) -> tuple[Any, Any]:
    """Create the store and job backend selected by ``settings.backend``."""
    if settings.backend == "memory":
        from echo_operator.runtimes.memory import InMemoryJobBackend
        from echo_operator.store.memory import InMemoryEchoStore

        backend = InMemoryJobBackend(auto_complete=JobState.SUCCEEDED)
        return InMemoryEchoStore(job_backend=backend), backend

    from echo_operator.kube import load_config
    from echo_operator.runtimes.kubernetes import KubernetesJobBackend
    from echo_operator.store.kubernetes import KubernetesEchoStore

    load_config(settings.in_cluster)
    return (
        KubernetesEchoStore(namespace=settings.namespace),
        KubernetesJobBackend(namespace=settings.namespace),
    )


def wire_controller(settings: OperatorSettings, store: Any, backend: Any) -> Controller:
    """Build the controller and bind the Echo and Job watches."""
    controller = build_controller(settings, store, backend)
    controller.watch(store.watch(), for_resource())
    controller.watch(backend.watch(), owns(JOB_KIND))
    return controller
