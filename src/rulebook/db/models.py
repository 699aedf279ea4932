"""Domain models for the rulebook database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field


@dataclass
class Sourcebook:
    authority: str
    code: str
    jurisdiction: str | None = None
    title: str | None = None
    doc_type: str | None = None
    home_url: str | None = None
    status: str = "active"
    id: int | None = None  # set after upsert
    created_at: str | None = None
    updated_at: str | None = None


# Version lifecycle: rows are written as ingesting and become readable once
# marked active. A version whose sourcebook failed is marked failed.
VERSION_INGESTING = "ingesting"
VERSION_ACTIVE = "active"
VERSION_FAILED = "failed"


@dataclass
class DocumentVersion:
    sourcebook_id: int
    version_label: str | None = None
    effective_date: str | None = None
    published_date: str | None = None
    source_url: str | None = None
    content_hash: str | None = None
    status: str = VERSION_ACTIVE
    id: int | None = None
    ingested_at: str | None = None


@dataclass
class Section:
    """A chapter (level 1) or section (level 2) row scoped to one version."""

    level: int
    canonical_ref: str
    parent_id: int | None = None
    section_number: str | None = None
    section_title: str | None = None
    path: str | None = None
    anchor: str | None = None
    text: str | None = None
    html: str | None = None
    order_index: int | None = None
    content_hash: str | None = None
    version_id: int | None = None
    id: int | None = None


@dataclass
class Paragraph:
    """A leaf provision. ``section_key`` is the source's transient section id."""

    section_key: str | None
    paragraph_number: str | None = None
    canonical_ref: str | None = None
    anchor: str | None = None
    text: str | None = None
    html: str | None = None
    content_hash: str | None = None
    section_id: int | None = None
    id: int | None = None


@dataclass
class IngestRun:
    authority: str
    source: str | None = None
    status: str = "running"
    stats_json: str = field(default_factory=lambda: "{}")
    error_json: str = field(default_factory=lambda: "{}")
    id: int | None = None
    started_at: str | None = None
    ended_at: str | None = None

    @property
    def stats(self) -> dict:
        return json.loads(self.stats_json)

    @property
    def error(self) -> dict:
        return json.loads(self.error_json)


@dataclass
class LatestCounts:
    """Persisted chapter / section / paragraph counts for a code's latest version."""

    code: str
    chapters: int = 0
    sections: int = 0
    paragraphs: int = 0


@dataclass
class ReferenceMatch:
    """Result of a canonical-reference lookup (paragraph preferred over section)."""

    type: str  # paragraph | section
    canonical_ref: str
    sourcebook_code: str
    sourcebook_title: str | None
    version_id: int
    section: Section
    paragraph: Paragraph | None = None


@dataclass
class SearchHit:
    type: str  # paragraph | section
    canonical_ref: str | None
    sourcebook_code: str
    section_id: int
    paragraph_id: int | None
    score: float
