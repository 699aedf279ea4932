"""Rulebook database layer."""

from rulebook.db.connection import Database
from rulebook.db.migrations import MIGRATIONS, run_migrations
from rulebook.db.schema import REQUIRED_TABLES, initialize, missing_tables

__all__ = [
    "Database",
    "initialize",
    "missing_tables",
    "run_migrations",
    "MIGRATIONS",
    "REQUIRED_TABLES",
]
