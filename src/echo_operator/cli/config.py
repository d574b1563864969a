"""
CLI: ``echo-operator config``: configuration inspection.
"""

from __future__ import annotations

import typer
from rich.table import Table

from echo_operator.cli.utils import console, load_settings

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show the effective configuration."""
    settings = load_settings()

    if format == "json":
        console.print_json(settings.model_dump_json())
        return

    if format == "env":
        for key, value in settings.model_dump().items():
            console.print(f"ECHO_OPERATOR_{key.upper()}={'' if value is None else value}")
        return

    if format != "table":
        raise typer.BadParameter(f"unknown format {format!r}", param_hint="--format")

    table = Table(title="echo-operator settings")
    table.add_column("Setting")
    table.add_column("Value")
    for key, value in settings.model_dump().items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)
