"""Helpers shared by the rulebook CLI commands."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from rulebook.cli.errors import err_config, err_no_db
from rulebook.config import ConfigError, RulebookConfig, load_config
from rulebook.db.connection import Database
from rulebook.ingest.runs import IngestStats


def load_config_or_exit(console: Console, project_dir: Path | None = None) -> RulebookConfig:
    """Load the merged config; print an actionable error and exit 1 if invalid."""
    try:
        return load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


def resolve_db(db: Path | None, cfg: RulebookConfig) -> Path:
    return db if db is not None else Path(cfg.database.path)


def open_existing_db(db_path: Path, console: Console) -> sqlite3.Connection:
    """Open *db_path* without creating it; exit 1 if it does not exist."""
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    return Database(db_path).connect()


def console_log(console: Console):
    """Return a progress callback that prints plain text (no markup parsing)."""

    def _log(message: str) -> None:
        console.print(message, markup=False, highlight=False)

    return _log


def stats_table(stats: IngestStats, title: str = "Ingested") -> Table:
    table = Table(title=title, show_header=False, box=None, padding=(0, 1))
    table.add_column("Counter", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Sourcebooks", str(stats.sourcebooks))
    table.add_row("Chapters", str(stats.chapters))
    table.add_row("Sections", str(stats.sections))
    table.add_row("Provisions", str(stats.provisions))
    if stats.dropped_sections or stats.dropped_provisions:
        table.add_row("Dropped sections", f"[yellow]{stats.dropped_sections}[/]")
        table.add_row("Dropped provisions", f"[yellow]{stats.dropped_provisions}[/]")
    if stats.failed_sourcebooks:
        failed = ", ".join(f["code"] for f in stats.failed_sourcebooks)
        table.add_row("Failed", f"[red]{failed}[/]")
    return table
