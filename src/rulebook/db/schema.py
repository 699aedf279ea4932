"""Schema initialization and readiness checks."""

from __future__ import annotations

import sqlite3

# Tables the ingestion pipeline writes to; all must exist before a run starts.
REQUIRED_TABLES: tuple[str, ...] = (
    "sourcebooks",
    "document_versions",
    "sections",
    "paragraphs",
    "ingest_runs",
    "sections_fts",
    "paragraphs_fts",
)


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    from rulebook.db.migrations import run_migrations

    run_migrations(conn)


def missing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the required tables that are absent from *conn*, in declaration order."""
    present = {
        r[0]
        for r in conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table'"
        ).fetchall()
    }
    return [name for name in REQUIRED_TABLES if name not in present]
