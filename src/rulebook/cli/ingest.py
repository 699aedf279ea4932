"""rulebook ingest — one audited ingestion run.

Fails fast (exit 1, nothing fetched) when the database is missing or not
initialised. Any failure that fails the run exits 1 after the run record
has been finalized as ``failed``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from rulebook.cli._common import (
    console_log,
    load_config_or_exit,
    open_existing_db,
    resolve_db,
    stats_table,
)
from rulebook.cli.errors import err_ingest_failed, err_store_unavailable
from rulebook.db.repository import Repository
from rulebook.errors import IngestError, StoreUnavailableError
from rulebook.ingest.pipeline import ingest_rulebook

console = Console()


def ingest_cmd(
    sourcebook: Annotated[
        list[str] | None,
        typer.Option("--sourcebook", "-s", help="Sourcebook code to ingest (repeatable)."),
    ] = None,
    max_sourcebooks: Annotated[
        int | None,
        typer.Option("--max-sourcebooks", min=1, help="Ingest at most N sourcebooks."),
    ] = None,
    max_chapters: Annotated[
        int | None,
        typer.Option("--max-chapters", min=1, help="Fetch provisions for at most N chapters per sourcebook."),
    ] = None,
    keep_going: Annotated[
        bool,
        typer.Option("--keep-going", help="Record failed sourcebooks and continue with the rest."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Database path (default: database.path from config)."),
    ] = None,
) -> None:
    """Ingest the handbook (or selected sourcebooks) into the local store."""
    cfg = load_config_or_exit(console)
    conn = open_existing_db(resolve_db(db, cfg), console)

    try:
        stats = ingest_rulebook(
            Repository(conn),
            cfg.build_client(),
            authority=cfg.ingest.authority,
            jurisdiction=cfg.ingest.jurisdiction,
            public_base=cfg.source.public_base,
            sourcebooks=sourcebook,
            max_sourcebooks=max_sourcebooks,
            max_chapters=max_chapters,
            keep_going=keep_going,
            log=console_log(console),
        )
    except StoreUnavailableError as exc:
        console.print(err_store_unavailable(str(exc)))
        raise typer.Exit(1)
    except IngestError as exc:
        console.print(err_ingest_failed(exc))
        raise typer.Exit(1)
    finally:
        conn.close()

    console.print(stats_table(stats))
    if stats.failed_sourcebooks:
        raise typer.Exit(1)
    console.print("[green]✓[/] Ingestion completed")
