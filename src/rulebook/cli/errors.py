"""Rulebook rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from rulebook.cli.errors import err_no_db
    console.print(err_no_db(".rulebook.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from rulebook.errors import IngestError

_HINTS: dict[str, str] = {
    "transient": "The handbook API did not respond. Check connectivity and re-run; "
    "use --sourcebook to resume with specific codes.",
    "data": "The handbook API returned an unexpected payload. Check source.api_base "
    "and the index / provisions paths in rulebook.yaml.",
    "persistence": "The database rejected a write. Check disk space and that no other "
    "process holds a lock on the database.",
    "precondition": "Run:  rulebook init",
}


def err_no_db(db_path: str = ".rulebook.db") -> str:
    """No database found at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{escape(db_path)}'.\n"
        "  Run:  rulebook init"
    )


def err_store_unavailable(message: str) -> str:
    """Database exists but is not initialised / reachable."""
    return (
        f"[red]Error:[/] {escape(message)}\n"
        "  Run:  rulebook init  (safe to re-run; existing data is preserved)"
    )


def err_ingest_failed(exc: IngestError) -> str:
    """The ingestion run failed; the run record has been marked failed."""
    hint = _HINTS.get(exc.kind, "See `rulebook status` for the recorded error.")
    return (
        f"[red]Error:[/] Ingestion failed ({exc.kind}): {escape(str(exc))}\n"
        f"  {hint}"
    )


def err_config(message: str) -> str:
    """Config file contains an invalid value."""
    return (
        f"[red]Error:[/] Invalid configuration: {escape(message)}\n"
        "  Fix rulebook.yaml (or ~/.rulebook/config.yaml) and try again."
    )


def err_inventory_missing(path: str) -> str:
    """Batch driver needs an inventory file or an explicit code list."""
    return (
        f"[red]Error:[/] Inventory file missing: '{escape(path)}'\n"
        "  Pass --inventory PATH, set ingest.inventory in rulebook.yaml,\n"
        "  or list codes explicitly:  rulebook batch --codes PRIN,SYSC"
    )


def err_inventory_invalid(path: str, reason: str) -> str:
    return (
        f"[red]Error:[/] Inventory file '{escape(path)}' is not valid: {escape(reason)}\n"
        '  Expected:  {"sourcebooks": [{"code": "SYSC", "chapters": 21, "sections": 150}]}'
    )


def err_batch_range(start: int, end: int, total: int) -> str:
    """--start-batch / --end-batch select nothing."""
    return (
        f"[red]Error:[/] Batch range {start}..{end} selects no batches (total: {total}).\n"
        "  Batches are 1-based and inclusive, e.g.  --start-batch 1 --end-batch 2"
    )


def err_reference_not_found(ref: str) -> str:
    """Reference not found in any ingested version."""
    return (
        f"[yellow]Reference not found:[/] '{escape(ref)}' is not in the local store.\n"
        "  Check the suffix (e.g. 3.1R vs 3.1G) or ingest the sourcebook:\n"
        "    rulebook ingest --sourcebook <CODE>"
    )
