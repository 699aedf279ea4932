"""Tests for version and section persistence."""

from __future__ import annotations

import copy

from conftest import HANDBOOK_INDEX

from rulebook.db.repository import Repository
from rulebook.ingest.fingerprint import sourcebook_fingerprint
from rulebook.ingest.hierarchy import (
    CollectedChapter,
    CollectedSection,
    CollectedSourcebook,
    collect_sourcebooks,
)
from rulebook.ingest.versions import VersionWriter


def _prin() -> CollectedSourcebook:
    return collect_sourcebooks(copy.deepcopy(HANDBOOK_INDEX["Result"]["headers"]))[0]


def _writer(conn) -> VersionWriter:
    return VersionWriter(Repository(conn), "FCA", "UK", "https://handbook.test/handbook/")


def test_write_persists_sourcebook_version_and_tree(tmp_db):
    persisted = _writer(tmp_db).write(_prin())
    repo = Repository(tmp_db)

    sourcebook = repo.get_sourcebook_by_code("FCA", "PRIN")
    assert sourcebook.id == persisted.sourcebook_id
    assert sourcebook.title == "Principles for Businesses"
    assert sourcebook.jurisdiction == "UK"
    assert sourcebook.doc_type == "sourcebook"
    assert sourcebook.home_url == "https://handbook.test/handbook/PRIN/"

    [version] = repo.list_versions(sourcebook.id)
    assert version.id == persisted.version_id
    assert version.status == "ingesting"
    # Not readable until the pipeline activates it.
    assert repo.get_latest_version(sourcebook.id) is None
    assert version.version_label == "01/02/2024"
    assert version.effective_date == "2024-02-01"
    assert version.content_hash == sourcebook_fingerprint("PRIN", "01/02/2024", 2)

    outline = repo.get_outline(version.id)
    assert [(c.canonical_ref, [s.canonical_ref for s in secs]) for c, secs in outline] == [
        ("PRIN 1", ["PRIN 1.1"]),
        ("PRIN 2", ["PRIN 2.1"]),
    ]
    assert outline[0][0].text == "PRIN 1 - Introduction"
    assert outline[0][1][0].parent_id == outline[0][0].id
    assert persisted.sections_written == 2
    assert persisted.sections_dropped == 0


def test_write_returns_section_ids_by_transient_key(tmp_db):
    persisted = _writer(tmp_db).write(_prin())
    assert set(persisted.section_ids_by_key) == {"sec-prin-1-1", "sec-prin-2-1"}
    assert set(persisted.chapter_ids) == {"PRIN 1", "PRIN 2"}


def test_write_twice_appends_versions(tmp_db):
    writer = _writer(tmp_db)
    first = writer.write(_prin())
    second = writer.write(_prin())

    assert first.sourcebook_id == second.sourcebook_id
    assert first.version_id != second.version_id
    assert first.content_hash == second.content_hash
    assert len(Repository(tmp_db).list_versions(first.sourcebook_id)) == 2
    # Each version owns its own section rows.
    assert set(first.section_ids_by_key.values()).isdisjoint(second.section_ids_by_key.values())


def test_changed_marker_changes_fingerprint(tmp_db):
    writer = _writer(tmp_db)
    book = _prin()
    first = writer.write(book)
    book.last_modified = "02/02/2024"
    second = writer.write(book)
    assert first.content_hash != second.content_hash


def test_section_with_unknown_parent_is_dropped(tmp_db):
    book = CollectedSourcebook(
        code="GEN",
        title="General Provisions",
        chapters=[CollectedChapter(key="c1", ref="GEN 1", title="Intro", order_index=0)],
        sections=[
            CollectedSection(key="s1", parent_key="c1", ref="GEN 1.1", title="A", order_index=0),
            CollectedSection(key="s2", parent_key="missing", ref="GEN 9.1", title="B", order_index=1),
        ],
    )
    persisted = _writer(tmp_db).write(book)
    assert persisted.sections_written == 1
    assert persisted.sections_dropped == 1
    assert list(persisted.section_ids_by_key) == ["s1"]
    parents = tmp_db.execute("SELECT COUNT(*) FROM sections WHERE level = 2 AND parent_id IS NULL").fetchone()[0]
    assert parents == 0


def test_duplicate_refs_keep_first_occurrence(tmp_db):
    book = CollectedSourcebook(
        code="GEN",
        title=None,
        chapters=[
            CollectedChapter(key="c1", ref="GEN 1", title="Intro", order_index=0),
            CollectedChapter(key="c2", ref="GEN 1", title="Duplicate", order_index=1),
        ],
        sections=[
            CollectedSection(key="s1", parent_key="c1", ref="GEN 1.1", title="A", order_index=0),
            CollectedSection(key="s2", parent_key="c1", ref="GEN 1.1", title="A again", order_index=1),
            CollectedSection(key="s3", parent_key="c2", ref="GEN 1.2", title="Under duplicate", order_index=0),
        ],
    )
    persisted = _writer(tmp_db).write(book)
    assert list(persisted.chapter_ids) == ["GEN 1"]
    assert list(persisted.section_ids_by_key) == ["s1"]
    assert persisted.sections_dropped == 3


def test_chapter_without_ref_is_dropped(tmp_db):
    book = CollectedSourcebook(
        code="GEN",
        title=None,
        chapters=[CollectedChapter(key=None, ref=None, title=None, order_index=0)],
    )
    persisted = _writer(tmp_db).write(book)
    assert persisted.chapter_ids == {}
    assert persisted.sections_dropped == 1


def test_upsert_keeps_one_sourcebook_row(tmp_db):
    writer = _writer(tmp_db)
    book = _prin()
    writer.write(book)
    book.title = "Principles (renamed)"
    writer.write(book)
    rows = tmp_db.execute("SELECT title FROM sourcebooks WHERE code = 'PRIN'").fetchall()
    assert [r["title"] for r in rows] == ["Principles (renamed)"]
