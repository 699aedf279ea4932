"""rulebook status — latest ingestion run and stored sourcebooks."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from rulebook.cli._common import load_config_or_exit, resolve_db
from rulebook.db.connection import Database
from rulebook.db.models import IngestRun
from rulebook.db.repository import Repository
from rulebook.db.schema import missing_tables

console = Console()

_STATUS_STYLE = {"completed": "green", "failed": "red", "running": "yellow"}


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Database path (default: database.path from config)."),
    ] = None,
) -> None:
    """Show the latest ingestion run and the stored sourcebooks."""
    cfg = load_config_or_exit(console)
    db_path = resolve_db(db, cfg)
    authority = cfg.ingest.authority

    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  rulebook init",
                title="[bold]Rulebook[/]",
                expand=False,
            )
        )
        return

    conn = Database(db_path).connect()
    try:
        missing = missing_tables(conn)
        if missing:
            console.print(
                Panel(
                    f"[yellow]Database not initialised[/] (missing: {', '.join(missing)}).\n"
                    "  Run:  rulebook init",
                    title="[bold]Rulebook[/]",
                    expand=False,
                )
            )
            return
        repo = Repository(conn)
        _show_run_panel(repo.get_latest_run(authority), db_path, authority)
        _show_sourcebooks(repo, authority)
    finally:
        conn.close()


def _show_run_panel(run: IngestRun | None, db_path: Path, authority: str) -> None:
    lines = [f"[bold]Database:[/]  {escape(str(db_path))}", f"[bold]Authority:[/] {escape(authority)}"]
    if run is None:
        lines.append("[dim]No ingestion runs yet.[/]  Run:  rulebook ingest")
        console.print(Panel("\n".join(lines), title="[bold]Latest run[/]", expand=False))
        return

    style = _STATUS_STYLE.get(run.status, "white")
    lines.append(f"[bold]Run:[/]       #{run.id} [{style}]{run.status}[/]")
    lines.append(f"[bold]Started:[/]   {run.started_at}")
    lines.append(f"[bold]Ended:[/]     {run.ended_at or '-'}")

    stats = run.stats
    if stats:
        lines.append(
            "[bold]Counts:[/]    "
            f"{stats.get('sourcebooks', 0)} sourcebooks, "
            f"{stats.get('chapters', 0)} chapters, "
            f"{stats.get('sections', 0)} sections, "
            f"{stats.get('provisions', 0)} provisions"
        )
        dropped = stats.get("dropped_sections", 0) + stats.get("dropped_provisions", 0)
        if dropped:
            lines.append(
                f"[bold]Dropped:[/]   [yellow]{stats.get('dropped_sections', 0)} sections, "
                f"{stats.get('dropped_provisions', 0)} provisions[/]"
            )
        failed = stats.get("failed_sourcebooks") or []
        if failed:
            codes = ", ".join(escape(f.get("code", "?")) for f in failed)
            lines.append(f"[bold]Failed:[/]    [red]{codes}[/]")

    error = run.error
    if error:
        lines.append(
            f"[bold]Error:[/]     [red]{escape(error.get('kind', 'internal'))}[/] "
            f"{escape(error.get('message', ''))}"
        )

    console.print(Panel("\n".join(lines), title="[bold]Latest run[/]", expand=False))


def _show_sourcebooks(repo: Repository, authority: str) -> None:
    books = repo.list_sourcebooks(authority)
    if not books:
        console.print("[dim]No sourcebooks stored yet.[/]")
        return

    counts = repo.count_latest(authority, [sb.code for sb, _ in books])
    table = Table(title=f"Sourcebooks ({len(books)})")
    table.add_column("Code", style="bold")
    table.add_column("Title")
    table.add_column("Version")
    table.add_column("Ingested")
    table.add_column("Chapters", justify="right")
    table.add_column("Sections", justify="right")
    table.add_column("Provisions", justify="right")

    for sourcebook, version in books:
        c = counts.get(sourcebook.code)
        table.add_row(
            escape(sourcebook.code),
            escape(sourcebook.title or ""),
            escape(version.version_label or "-") if version else "-",
            version.ingested_at if version else "-",
            str(c.chapters) if c else "0",
            str(c.sections) if c else "0",
            str(c.paragraphs) if c else "0",
        )
    console.print(table)
