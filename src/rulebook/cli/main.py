"""Rulebook CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from rulebook.cli.batch import batch_cmd
from rulebook.cli.ingest import ingest_cmd
from rulebook.cli.init import init_cmd
from rulebook.cli.lookup import lookup_cmd, search_cmd
from rulebook.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("rulebook")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"rulebook {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="rulebook",
    help=(
        "Rulebook — regulator handbook ingestion.\n\n"
        "  rulebook ingest   One audited run over the handbook (or selected sourcebooks).\n"
        "  rulebook batch    Checkpointed ingestion of a code inventory."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Rulebook — regulator handbook ingestion."""


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("batch")(batch_cmd)
app.command("status")(status_cmd)
app.command("lookup")(lookup_cmd)
app.command("search")(search_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed rulebook version."""
    typer.echo(f"rulebook {_installed_version()}")


if __name__ == "__main__":
    app()
