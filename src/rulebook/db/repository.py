"""Repository pattern for all rulebook database operations.

Single interface for: sourcebooks, document versions, sections, paragraphs,
ingest runs, reference lookup and FTS5 search. Writes are wrapped in a
transaction and surface ``sqlite3.Error`` as PersistenceError.
"""

from __future__ import annotations

import json
import re
import sqlite3
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager

from rulebook.db.models import (
    DocumentVersion,
    IngestRun,
    LatestCounts,
    Paragraph,
    ReferenceMatch,
    SearchHit,
    Section,
    Sourcebook,
)
from rulebook.db.schema import missing_tables
from rulebook.errors import PersistenceError, StoreUnavailableError

# Correlated subquery selecting the newest active version of sourcebook ``sb``.
_LATEST_VERSION = """
    SELECT v.id FROM document_versions v
    WHERE v.sourcebook_id = sb.id AND v.status = 'active'
    ORDER BY v.ingested_at DESC, v.id DESC
    LIMIT 1
"""

_SECTION_COLUMNS = (
    "id, version_id, parent_id, level, section_number, section_title, canonical_ref, "
    "path, anchor, text, html, order_index, content_hash"
)
_PARAGRAPH_COLUMNS = (
    "id, section_id, paragraph_number, canonical_ref, anchor, text, html, content_hash"
)


class Repository:
    """Data access layer for all rulebook entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see rulebook.db.schema.initialize).
        """
        self._conn = conn

    @contextmanager
    def _write(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Run a block in one transaction; translate driver errors."""
        try:
            with self._conn:
                yield self._conn
        except sqlite3.Error as exc:
            raise PersistenceError(f"{operation} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def ensure_ready(self) -> None:
        """Raise StoreUnavailableError unless every ingestion table exists."""
        try:
            missing = missing_tables(self._conn)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Database is not reachable: {exc}") from exc
        if missing:
            raise StoreUnavailableError(
                "Database schema is not initialised (missing: "
                + ", ".join(missing)
                + "). Run `rulebook init` first."
            )

    # ------------------------------------------------------------------
    # Sourcebooks + versions
    # ------------------------------------------------------------------

    def upsert_sourcebook(self, sourcebook: Sourcebook) -> Sourcebook:
        """Insert or update a sourcebook keyed by (authority, code).

        Returns:
            The stored Sourcebook with ``id`` populated.
        """
        if not sourcebook.code:
            raise PersistenceError("upsert sourcebook failed: code is required")
        with self._write(f"upsert sourcebook {sourcebook.code}") as conn:
            conn.execute(
                """
                INSERT INTO sourcebooks
                    (authority, jurisdiction, code, title, doc_type, home_url, status)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(authority, code) DO UPDATE SET
                    jurisdiction = excluded.jurisdiction,
                    title = excluded.title,
                    doc_type = excluded.doc_type,
                    home_url = excluded.home_url,
                    status = excluded.status,
                    updated_at = datetime('now')
                """,
                (
                    sourcebook.authority,
                    sourcebook.jurisdiction,
                    sourcebook.code,
                    sourcebook.title,
                    sourcebook.doc_type,
                    sourcebook.home_url,
                    sourcebook.status,
                ),
            )
        stored = self.get_sourcebook_by_code(sourcebook.authority, sourcebook.code)
        if stored is None:
            raise PersistenceError(f"upsert sourcebook {sourcebook.code} failed: row not found")
        return stored

    def get_sourcebook_by_code(self, authority: str, code: str) -> Sourcebook | None:
        """Return the sourcebook for (*authority*, *code*), or None."""
        row = self._conn.execute(
            "SELECT * FROM sourcebooks WHERE authority = ? AND code = ?",
            (authority, code),
        ).fetchone()
        return _row_to_sourcebook(row) if row else None

    def list_sourcebooks(
        self, authority: str
    ) -> list[tuple[Sourcebook, DocumentVersion | None]]:
        """Return all sourcebooks for *authority* ordered by code, each with its latest version."""
        rows = self._conn.execute(
            "SELECT * FROM sourcebooks WHERE authority = ? ORDER BY code", (authority,)
        ).fetchall()
        result: list[tuple[Sourcebook, DocumentVersion | None]] = []
        for row in rows:
            sourcebook = _row_to_sourcebook(row)
            result.append((sourcebook, self.get_latest_version(row["id"])))
        return result

    def create_version(self, version: DocumentVersion) -> DocumentVersion:
        """Append a new version under its sourcebook. Versions are never overwritten."""
        with self._write(f"create version for sourcebook {version.sourcebook_id}") as conn:
            cur = conn.execute(
                """
                INSERT INTO document_versions
                    (sourcebook_id, version_label, effective_date, published_date,
                     source_url, content_hash, status)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    version.sourcebook_id,
                    version.version_label,
                    version.effective_date,
                    version.published_date,
                    version.source_url,
                    version.content_hash,
                    version.status,
                ),
            )
            version_id = cur.lastrowid
        row = self._conn.execute(
            "SELECT * FROM document_versions WHERE id = ?", (version_id,)
        ).fetchone()
        return _row_to_version(row)

    def get_latest_version(self, sourcebook_id: int) -> DocumentVersion | None:
        """Return the most recently ingested active version of a sourcebook, or None."""
        row = self._conn.execute(
            """
            SELECT * FROM document_versions
            WHERE sourcebook_id = ? AND status = 'active'
            ORDER BY ingested_at DESC, id DESC
            LIMIT 1
            """,
            (sourcebook_id,),
        ).fetchone()
        return _row_to_version(row) if row else None

    def set_version_status(self, version_id: int, status: str) -> None:
        """Move a version through its lifecycle (ingesting, active, failed)."""
        with self._write(f"set status of version {version_id}") as conn:
            conn.execute(
                "UPDATE document_versions SET status = ? WHERE id = ?", (status, version_id)
            )

    def list_versions(self, sourcebook_id: int) -> list[DocumentVersion]:
        """Return every version of a sourcebook, oldest first."""
        rows = self._conn.execute(
            "SELECT * FROM document_versions WHERE sourcebook_id = ? ORDER BY ingested_at, id",
            (sourcebook_id,),
        ).fetchall()
        return [_row_to_version(r) for r in rows]

    # ------------------------------------------------------------------
    # Sections + paragraphs
    # ------------------------------------------------------------------

    def insert_sections(self, version_id: int, sections: Sequence[Section]) -> dict[str, int]:
        """Bulk-insert *sections* under *version_id* and index their text.

        Returns:
            Mapping of canonical reference → assigned section id.
        """
        assigned: dict[str, int] = {}
        if not sections:
            return assigned
        with self._write(f"insert sections for version {version_id}") as conn:
            for section in sections:
                cur = conn.execute(
                    """
                    INSERT INTO sections
                        (version_id, parent_id, level, section_number, section_title,
                         canonical_ref, path, anchor, text, html, order_index, content_hash)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        version_id,
                        section.parent_id,
                        section.level,
                        section.section_number,
                        section.section_title,
                        section.canonical_ref,
                        section.path,
                        section.anchor,
                        section.text,
                        section.html,
                        section.order_index,
                        section.content_hash,
                    ),
                )
                rowid = cur.lastrowid
                if section.text:
                    conn.execute(
                        "INSERT INTO sections_fts(rowid, text) VALUES (?, ?)",
                        (rowid, section.text),
                    )
                assigned[section.canonical_ref] = rowid
        return assigned

    def insert_paragraphs(
        self, section_ids: Mapping[str, int], paragraphs: Sequence[Paragraph]
    ) -> list[int]:
        """Bulk-insert *paragraphs*, resolving each owner through *section_ids*.

        Paragraphs whose ``section_key`` does not resolve are skipped, never
        stored with a NULL owner.

        Returns:
            Ids of the inserted paragraphs, in input order.
        """
        inserted: list[int] = []
        if not paragraphs:
            return inserted
        with self._write("insert paragraphs") as conn:
            for paragraph in paragraphs:
                section_id = section_ids.get(paragraph.section_key) if paragraph.section_key else None
                if section_id is None:
                    continue
                cur = conn.execute(
                    """
                    INSERT INTO paragraphs
                        (section_id, paragraph_number, canonical_ref, anchor, text, html,
                         content_hash)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        section_id,
                        paragraph.paragraph_number,
                        paragraph.canonical_ref,
                        paragraph.anchor,
                        paragraph.text,
                        paragraph.html,
                        paragraph.content_hash,
                    ),
                )
                rowid = cur.lastrowid
                if paragraph.text:
                    conn.execute(
                        "INSERT INTO paragraphs_fts(rowid, text) VALUES (?, ?)",
                        (rowid, paragraph.text),
                    )
                inserted.append(rowid)
        return inserted

    def get_outline(self, version_id: int) -> list[tuple[Section, list[Section]]]:
        """Return ``[(chapter, [sections...]), ...]`` for a version in source order."""
        rows = self._conn.execute(
            f"SELECT {_SECTION_COLUMNS} FROM sections WHERE version_id = ? "
            "ORDER BY level, order_index, id",
            (version_id,),
        ).fetchall()
        chapters: list[tuple[Section, list[Section]]] = []
        by_id: dict[int, list[Section]] = {}
        for row in rows:
            section = _row_to_section(row)
            if section.level == 1:
                children: list[Section] = []
                chapters.append((section, children))
                by_id[section.id] = children
            elif section.parent_id in by_id:
                by_id[section.parent_id].append(section)
        return chapters

    def get_paragraphs(self, section_id: int) -> list[Paragraph]:
        """Return the paragraphs owned by *section_id* in insertion order."""
        rows = self._conn.execute(
            f"SELECT {_PARAGRAPH_COLUMNS} FROM paragraphs WHERE section_id = ? ORDER BY id",
            (section_id,),
        ).fetchall()
        return [_row_to_paragraph(r) for r in rows]

    # ------------------------------------------------------------------
    # Lookup + search
    # ------------------------------------------------------------------

    def find_reference(self, authority: str, ref: str) -> ReferenceMatch | None:
        """Resolve a canonical reference against the newest active versions.

        Paragraph references win over section references.
        """
        if not ref:
            return None
        row = self._conn.execute(
            f"""
            SELECT p.id AS p_id, p.section_id, p.paragraph_number, p.canonical_ref AS p_ref,
                   p.anchor AS p_anchor, p.text AS p_text, p.html AS p_html,
                   p.content_hash AS p_hash,
                   sb.code, sb.title AS sb_title, s.version_id,
                   {_prefixed_section_columns("s")}
            FROM paragraphs p
            JOIN sections s ON s.id = p.section_id
            JOIN document_versions v ON v.id = s.version_id
            JOIN sourcebooks sb ON sb.id = v.sourcebook_id
            WHERE sb.authority = ? AND p.canonical_ref = ? AND v.status = 'active'
            ORDER BY v.ingested_at DESC, v.id DESC
            LIMIT 1
            """,
            (authority, ref),
        ).fetchone()
        if row:
            paragraph = Paragraph(
                id=row["p_id"],
                section_id=row["section_id"],
                section_key=None,
                paragraph_number=row["paragraph_number"],
                canonical_ref=row["p_ref"],
                anchor=row["p_anchor"],
                text=row["p_text"],
                html=row["p_html"],
                content_hash=row["p_hash"],
            )
            return ReferenceMatch(
                type="paragraph",
                canonical_ref=row["p_ref"],
                sourcebook_code=row["code"],
                sourcebook_title=row["sb_title"],
                version_id=row["version_id"],
                section=_row_to_section(row, prefix="s_"),
                paragraph=paragraph,
            )

        row = self._conn.execute(
            f"""
            SELECT sb.code, sb.title AS sb_title, s.version_id,
                   {_prefixed_section_columns("s")}
            FROM sections s
            JOIN document_versions v ON v.id = s.version_id
            JOIN sourcebooks sb ON sb.id = v.sourcebook_id
            WHERE sb.authority = ? AND s.canonical_ref = ? AND v.status = 'active'
            ORDER BY v.ingested_at DESC, v.id DESC
            LIMIT 1
            """,
            (authority, ref),
        ).fetchone()
        if row is None:
            return None
        return ReferenceMatch(
            type="section",
            canonical_ref=row["s_canonical_ref"],
            sourcebook_code=row["code"],
            sourcebook_title=row["sb_title"],
            version_id=row["version_id"],
            section=_row_to_section(row, prefix="s_"),
        )

    def search(self, authority: str, query: str, limit: int = 20) -> list[SearchHit]:
        """BM25 full-text search over the latest version of every sourcebook.

        bm25() returns negative values; lower (more negative) = better match.
        """
        # Punctuation and bare operators (AND, OR, NOT, NEAR) are FTS5 syntax;
        # each word is matched as a quoted string instead.
        words = re.sub(r"[^\w\s]", " ", query).split()
        if not words:
            return []
        fts_query = " ".join(f'"{w}"' for w in words)
        rows = self._conn.execute(
            f"""
            SELECT * FROM (
                SELECT 'section' AS type, s.canonical_ref, sb.code,
                       s.id AS section_id, NULL AS paragraph_id,
                       bm25(sections_fts) AS score
                FROM sections_fts
                JOIN sections s ON s.id = sections_fts.rowid
                JOIN sourcebooks sb ON sb.id = (
                    SELECT sourcebook_id FROM document_versions WHERE id = s.version_id
                )
                WHERE sections_fts MATCH ? AND sb.authority = ?
                  AND s.version_id = ({_LATEST_VERSION})

                UNION ALL

                SELECT 'paragraph' AS type, p.canonical_ref, sb.code,
                       s.id AS section_id, p.id AS paragraph_id,
                       bm25(paragraphs_fts) AS score
                FROM paragraphs_fts
                JOIN paragraphs p ON p.id = paragraphs_fts.rowid
                JOIN sections s ON s.id = p.section_id
                JOIN sourcebooks sb ON sb.id = (
                    SELECT sourcebook_id FROM document_versions WHERE id = s.version_id
                )
                WHERE paragraphs_fts MATCH ? AND sb.authority = ?
                  AND s.version_id = ({_LATEST_VERSION})
            )
            ORDER BY score
            LIMIT ?
            """,
            (fts_query, authority, fts_query, authority, limit),
        ).fetchall()
        return [
            SearchHit(
                type=r["type"],
                canonical_ref=r["canonical_ref"],
                sourcebook_code=r["code"],
                section_id=r["section_id"],
                paragraph_id=r["paragraph_id"],
                score=r["score"],
            )
            for r in rows
        ]

    def count_latest(self, authority: str, codes: Sequence[str]) -> dict[str, LatestCounts]:
        """Return persisted counts for the latest version of each code.

        Codes with no stored version are absent from the result.
        """
        if not codes:
            return {}
        placeholders = ",".join("?" * len(codes))
        rows = self._conn.execute(
            f"""
            SELECT sb.code,
                   (SELECT COUNT(*) FROM sections s
                    WHERE s.version_id = lv.version_id AND s.level = 1) AS chapters,
                   (SELECT COUNT(*) FROM sections s
                    WHERE s.version_id = lv.version_id AND s.level = 2) AS sections,
                   (SELECT COUNT(*) FROM paragraphs p
                    JOIN sections s ON s.id = p.section_id
                    WHERE s.version_id = lv.version_id) AS paragraphs
            FROM sourcebooks sb
            JOIN (
                SELECT sb.id AS sourcebook_id, ({_LATEST_VERSION}) AS version_id
                FROM sourcebooks sb
            ) lv ON lv.sourcebook_id = sb.id
            WHERE sb.authority = ? AND sb.code IN ({placeholders})
              AND lv.version_id IS NOT NULL
            ORDER BY sb.code
            """,
            (authority, *codes),
        ).fetchall()
        return {
            r["code"]: LatestCounts(
                code=r["code"],
                chapters=r["chapters"],
                sections=r["sections"],
                paragraphs=r["paragraphs"],
            )
            for r in rows
        }

    # ------------------------------------------------------------------
    # Ingest runs
    # ------------------------------------------------------------------

    def create_run(self, authority: str, source: str | None) -> int:
        """Insert a new run in ``running`` state and return its id."""
        with self._write("create ingest run") as conn:
            cur = conn.execute(
                "INSERT INTO ingest_runs (authority, source) VALUES (?, ?)",
                (authority, source),
            )
            return cur.lastrowid

    def finish_run(
        self,
        run_id: int,
        status: str,
        stats: dict,
        error: dict | None = None,
    ) -> None:
        """Set the terminal status, statistics and optional error of a run."""
        with self._write(f"finish ingest run {run_id}") as conn:
            conn.execute(
                """
                UPDATE ingest_runs
                SET ended_at = strftime('%Y-%m-%d %H:%M:%f', 'now'),
                    status = ?,
                    stats_json = ?,
                    error_json = ?
                WHERE id = ?
                """,
                (status, json.dumps(stats), json.dumps(error or {}), run_id),
            )

    def get_run(self, run_id: int) -> IngestRun | None:
        row = self._conn.execute("SELECT * FROM ingest_runs WHERE id = ?", (run_id,)).fetchone()
        return _row_to_run(row) if row else None

    def get_latest_run(self, authority: str) -> IngestRun | None:
        """Return the most recently started run for *authority*, or None."""
        row = self._conn.execute(
            "SELECT * FROM ingest_runs WHERE authority = ? ORDER BY started_at DESC, id DESC LIMIT 1",
            (authority,),
        ).fetchone()
        return _row_to_run(row) if row else None


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _prefixed_section_columns(alias: str) -> str:
    return ", ".join(
        f"{alias}.{col.strip()} AS s_{col.strip()}" for col in _SECTION_COLUMNS.split(",")
    )


def _row_to_sourcebook(row: sqlite3.Row) -> Sourcebook:
    return Sourcebook(
        id=row["id"],
        authority=row["authority"],
        jurisdiction=row["jurisdiction"],
        code=row["code"],
        title=row["title"],
        doc_type=row["doc_type"],
        home_url=row["home_url"],
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_version(row: sqlite3.Row) -> DocumentVersion:
    return DocumentVersion(
        id=row["id"],
        sourcebook_id=row["sourcebook_id"],
        version_label=row["version_label"],
        effective_date=row["effective_date"],
        published_date=row["published_date"],
        source_url=row["source_url"],
        content_hash=row["content_hash"],
        status=row["status"],
        ingested_at=row["ingested_at"],
    )


def _row_to_section(row: sqlite3.Row, prefix: str = "") -> Section:
    return Section(
        id=row[f"{prefix}id"],
        version_id=row[f"{prefix}version_id"],
        parent_id=row[f"{prefix}parent_id"],
        level=row[f"{prefix}level"],
        section_number=row[f"{prefix}section_number"],
        section_title=row[f"{prefix}section_title"],
        canonical_ref=row[f"{prefix}canonical_ref"],
        path=row[f"{prefix}path"],
        anchor=row[f"{prefix}anchor"],
        text=row[f"{prefix}text"],
        html=row[f"{prefix}html"],
        order_index=row[f"{prefix}order_index"],
        content_hash=row[f"{prefix}content_hash"],
    )


def _row_to_paragraph(row: sqlite3.Row) -> Paragraph:
    return Paragraph(
        id=row["id"],
        section_id=row["section_id"],
        section_key=None,
        paragraph_number=row["paragraph_number"],
        canonical_ref=row["canonical_ref"],
        anchor=row["anchor"],
        text=row["text"],
        html=row["html"],
        content_hash=row["content_hash"],
    )


def _row_to_run(row: sqlite3.Row) -> IngestRun:
    return IngestRun(
        id=row["id"],
        authority=row["authority"],
        source=row["source"],
        status=row["status"],
        stats_json=row["stats_json"],
        error_json=row["error_json"],
        started_at=row["started_at"],
        ended_at=row["ended_at"],
    )
