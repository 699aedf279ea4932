"""Hierarchy collector — flattens the nested taxonomy index into ordered records.

Input shape (one element of the index response's ``headers`` list)::

    {"parts": [                       # sourcebooks
        {"name": "SYSC Senior ...", "contains": "SYSC", "entityId": "...",
         "lastmodifieddate": "01/02/2024", "isDeleted": false,
         "parts": [                   # chapters
             {"name": "SYSC 3 Systems and Controls", "entityId": "...",
              "parts": [...]}         # sections
         ]}
    ]}

Sections reference their chapter by the chapter's transient key (the
source's ``entityId``), never by array position, because the tree is not
guaranteed to be regular.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from rulebook.ingest.references import path_from_ref, sourcebook_title, split_name


@dataclass
class CollectedChapter:
    key: str | None
    ref: str | None
    title: str | None
    order_index: int
    anchor: str | None = None
    path: str | None = None


@dataclass
class CollectedSection:
    key: str | None
    parent_key: str | None
    ref: str | None
    title: str | None
    order_index: int
    anchor: str | None = None
    path: str | None = None


@dataclass
class CollectedSourcebook:
    code: str
    title: str | None
    entity_id: str | None = None
    last_modified: str | None = None
    chapters: list[CollectedChapter] = field(default_factory=list)
    sections: list[CollectedSection] = field(default_factory=list)


def collect_sourcebooks(headers: Any) -> list[CollectedSourcebook]:
    """Walk ``headers[].parts[]`` and return one record per live sourcebook.

    Deleted nodes are skipped at every level; non-list ``parts`` are treated
    as empty. A sourcebook without a derivable code is skipped.
    """
    sourcebooks: list[CollectedSourcebook] = []
    for block in _parts_of({"parts": headers}):
        for node in _parts_of(block):
            if _is_deleted(node):
                continue
            book = _collect_sourcebook(node)
            if book is not None:
                sourcebooks.append(book)
    return sourcebooks


def filter_sourcebooks(
    sourcebooks: list[CollectedSourcebook],
    codes: Iterable[str] | None = None,
    limit: int | None = None,
) -> list[CollectedSourcebook]:
    """Keep only *codes* (case-insensitive) and then the first *limit* sourcebooks."""
    wanted = {c.strip().upper() for c in codes or [] if c and c.strip()}
    if wanted:
        sourcebooks = [b for b in sourcebooks if b.code in wanted]
    if limit is not None and limit > 0:
        sourcebooks = sourcebooks[:limit]
    return sourcebooks


# ------------------------------------------------------------------
# Node helpers
# ------------------------------------------------------------------


def _collect_sourcebook(node: dict) -> CollectedSourcebook | None:
    raw_code = (node.get("contains") or node.get("name") or "").split()
    code = raw_code[0].upper() if raw_code else ""
    if not code:
        return None

    book = CollectedSourcebook(
        code=code,
        title=sourcebook_title(node.get("name"), code),
        entity_id=node.get("entityId") or None,
        last_modified=node.get("lastmodifieddate") or None,
    )

    for chapter_index, chapter in enumerate(_parts_of(node)):
        if _is_deleted(chapter):
            continue
        chapter_key = chapter.get("entityId") or None
        ref, title = split_name(chapter.get("name"))
        ref = ref or chapter.get("contains") or (chapter_key.upper() if chapter_key else None)
        book.chapters.append(
            CollectedChapter(
                key=chapter_key,
                ref=ref,
                title=title or chapter.get("name") or None,
                order_index=chapter_index,
                anchor=chapter_key,
                path=path_from_ref(ref),
            )
        )

        for section_index, section in enumerate(_parts_of(chapter)):
            if _is_deleted(section):
                continue
            section_key = section.get("entityId") or None
            section_ref, section_title = split_name(section.get("name"))
            section_ref = section_ref or section.get("name") or None
            book.sections.append(
                CollectedSection(
                    key=section_key,
                    parent_key=chapter_key,
                    ref=section_ref,
                    title=section_title or section.get("name") or None,
                    order_index=section_index,
                    anchor=section_key,
                    path=path_from_ref(section_ref),
                )
            )

    return book


def _parts_of(node: Any) -> list[dict]:
    if not isinstance(node, dict):
        return []
    parts = node.get("parts")
    if not isinstance(parts, list):
        return []
    return [p for p in parts if isinstance(p, dict)]


def _is_deleted(node: dict) -> bool:
    return bool(node.get("isDeleted"))
