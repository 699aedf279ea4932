"""rulebook lookup / search — read the newest stored version of each sourcebook."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from rulebook.cli._common import load_config_or_exit, open_existing_db, resolve_db
from rulebook.cli.errors import err_reference_not_found, err_store_unavailable
from rulebook.db.models import ReferenceMatch
from rulebook.db.repository import Repository
from rulebook.errors import StoreUnavailableError

console = Console()

_SNIPPET_CHARS = 400


def lookup_cmd(
    ref: Annotated[str, typer.Argument(help="Canonical reference, e.g. 'SYSC 4.1.1R'.")],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Database path (default: database.path from config)."),
    ] = None,
) -> None:
    """Find a provision or section by its canonical reference."""
    cfg = load_config_or_exit(console)
    conn = open_existing_db(resolve_db(db, cfg), console)
    try:
        repo = Repository(conn)
        try:
            repo.ensure_ready()
        except StoreUnavailableError as exc:
            console.print(err_store_unavailable(str(exc)))
            raise typer.Exit(1)
        match = repo.find_reference(cfg.ingest.authority, ref.strip())
    finally:
        conn.close()

    if match is None:
        console.print(err_reference_not_found(ref))
        raise typer.Exit(1)
    console.print(_match_panel(match))


def search_cmd(
    query: Annotated[str, typer.Argument(help="Full-text query.")],
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", min=1, help="Maximum number of hits."),
    ] = 20,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Database path (default: database.path from config)."),
    ] = None,
) -> None:
    """Full-text search over the newest version of every sourcebook."""
    cfg = load_config_or_exit(console)
    conn = open_existing_db(resolve_db(db, cfg), console)
    try:
        repo = Repository(conn)
        try:
            repo.ensure_ready()
        except StoreUnavailableError as exc:
            console.print(err_store_unavailable(str(exc)))
            raise typer.Exit(1)
        hits = repo.search(cfg.ingest.authority, query, limit=limit)
    finally:
        conn.close()

    if not hits:
        console.print(f"[yellow]No matches for[/] '{escape(query)}'.")
        return

    table = Table(title=f"Matches for '{escape(query)}'")
    table.add_column("Reference", style="bold")
    table.add_column("Sourcebook")
    table.add_column("Type")
    table.add_column("Score", justify="right")
    for hit in hits:
        table.add_row(
            escape(hit.canonical_ref or "-"),
            escape(hit.sourcebook_code),
            hit.type,
            f"{hit.score:.2f}",
        )
    console.print(table)


def _match_panel(match: ReferenceMatch) -> Panel:
    section = match.section
    lines = [
        f"[bold]Sourcebook:[/] {escape(match.sourcebook_code)}"
        + (f" - {escape(match.sourcebook_title)}" if match.sourcebook_title else ""),
        f"[bold]Section:[/]    {escape(section.text or section.canonical_ref)}",
    ]
    body = match.paragraph.text if match.paragraph else None
    if body:
        if len(body) > _SNIPPET_CHARS:
            body = body[:_SNIPPET_CHARS].rstrip() + "..."
        lines.append("")
        lines.append(escape(body))
    return Panel(
        "\n".join(lines),
        title=f"[bold]{escape(match.canonical_ref)}[/] ({match.type})",
        expand=False,
    )
