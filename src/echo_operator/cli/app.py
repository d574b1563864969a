"""
Root Typer application for the echo-operator CLI.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

import typer
from typer import Typer

from echo_operator import __version__
from echo_operator.api.v1alpha1 import ObjectKey
from echo_operator.cli.config import app as config_app
from echo_operator.cli.demo import demo
from echo_operator.cli.run import run
from echo_operator.controller.state_machine import job_name_for

app = Typer(
    name="echo-operator",
    help="Reconcile Echo resources into batch Jobs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("echo-operator")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"echo-operator {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """echo-operator CLI."""


@app.command("job-name")
def job_name(
    namespace: str = typer.Argument(..., help="Echo namespace"),
    name: str = typer.Argument(..., help="Echo name"),
) -> None:
    """Print the Job name derived for an Echo."""
    typer.echo(job_name_for(ObjectKey(namespace, name)))


app.command("run")(run)
app.command("demo")(demo)
app.add_typer(config_app, name="config", help="Configuration management.")
