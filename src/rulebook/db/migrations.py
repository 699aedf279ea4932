"""Forward-only migration runner for the rulebook store schema."""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS sourcebooks (
    id              INTEGER PRIMARY KEY,
    authority       TEXT NOT NULL,
    jurisdiction    TEXT,
    code            TEXT NOT NULL,
    title           TEXT,
    doc_type        TEXT,
    home_url        TEXT,
    status          TEXT NOT NULL DEFAULT 'active',
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (authority, code)
);

CREATE TABLE IF NOT EXISTS document_versions (
    id              INTEGER PRIMARY KEY,
    sourcebook_id   INTEGER NOT NULL REFERENCES sourcebooks(id) ON DELETE CASCADE,
    version_label   TEXT,
    effective_date  DATE,
    published_date  DATE,
    source_url      TEXT,
    content_hash    TEXT,
    status          TEXT NOT NULL DEFAULT 'active',
    ingested_at     DATETIME NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now'))
);

CREATE TABLE IF NOT EXISTS sections (
    id              INTEGER PRIMARY KEY,
    version_id      INTEGER NOT NULL REFERENCES document_versions(id) ON DELETE CASCADE,
    parent_id       INTEGER REFERENCES sections(id) ON DELETE CASCADE,
    level           INTEGER NOT NULL,
    section_number  TEXT,
    section_title   TEXT,
    canonical_ref   TEXT NOT NULL,
    path            TEXT,
    anchor          TEXT,
    text            TEXT,
    html            TEXT,
    order_index     INTEGER,
    content_hash    TEXT,
    UNIQUE (version_id, canonical_ref)
);

CREATE TABLE IF NOT EXISTS paragraphs (
    id              INTEGER PRIMARY KEY,
    section_id      INTEGER NOT NULL REFERENCES sections(id) ON DELETE CASCADE,
    paragraph_number TEXT,
    canonical_ref   TEXT,
    anchor          TEXT,
    text            TEXT,
    html            TEXT,
    content_hash    TEXT
);

CREATE TABLE IF NOT EXISTS ingest_runs (
    id              INTEGER PRIMARY KEY,
    authority       TEXT NOT NULL,
    source          TEXT,
    status          TEXT NOT NULL DEFAULT 'running',
    stats_json      TEXT NOT NULL DEFAULT '{}',
    error_json      TEXT NOT NULL DEFAULT '{}',
    started_at      DATETIME NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now')),
    ended_at        DATETIME
);

CREATE VIRTUAL TABLE IF NOT EXISTS sections_fts USING fts5(text, tokenize='porter ascii');
CREATE VIRTUAL TABLE IF NOT EXISTS paragraphs_fts USING fts5(text, tokenize='porter ascii');

CREATE INDEX IF NOT EXISTS idx_versions_sourcebook
    ON document_versions (sourcebook_id, ingested_at DESC);
CREATE INDEX IF NOT EXISTS idx_sections_version_order
    ON sections (version_id, level, order_index);
CREATE INDEX IF NOT EXISTS idx_sections_ref
    ON sections (canonical_ref);
CREATE INDEX IF NOT EXISTS idx_paragraphs_section
    ON paragraphs (section_id);
CREATE INDEX IF NOT EXISTS idx_paragraphs_ref
    ON paragraphs (canonical_ref);
CREATE INDEX IF NOT EXISTS idx_runs_authority
    ON ingest_runs (authority, started_at DESC);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
