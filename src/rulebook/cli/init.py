"""rulebook init — create the local store and a project config.

Creates:
  .rulebook.db     — empty store with the full schema (idempotent)
  rulebook.yaml    — project config with defaults (left untouched if present)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from rulebook.cli._common import load_config_or_exit, resolve_db
from rulebook.config import write_project_config
from rulebook.db.connection import Database
from rulebook.db.schema import initialize

console = Console()


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Database path (default: database.path from config)."),
    ] = None,
) -> None:
    """Create the rulebook database schema and a rulebook.yaml template."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    cfg = load_config_or_exit(console, project_dir)
    db_path = resolve_db(db, cfg)
    if not db_path.is_absolute():
        db_path = project_dir / db_path

    existed = db_path.exists()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = Database(db_path).connect()
    try:
        initialize(conn)
    finally:
        conn.close()
    if existed:
        console.print(f"  [green]✓[/] {db_path} (schema up to date, data preserved)")
    else:
        console.print(f"  [green]✓[/] {db_path}")

    cfg_path = write_project_config(project_dir)
    console.print(f"  [green]✓[/] {cfg_path}")

    console.print("\nNext steps:")
    console.print("  1. rulebook ingest --sourcebook SYSC --max-chapters 2   (smoke test)")
    console.print("  2. rulebook batch --inventory inventory.json            (full ingest)")
    console.print("  3. rulebook status                                      (check runs)")
