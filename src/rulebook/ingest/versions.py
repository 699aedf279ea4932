"""Version and section persistence for one collected sourcebook.

Persistence happens in dependency order so that children can be linked to
rows that already have ids:

1. upsert the sourcebook by (authority, code)
2. append a new DocumentVersion in ``ingesting`` state (always, even when the
   fingerprint is unchanged); the pipeline activates it once provisions land
3. insert chapters (level 1)  → canonical ref → chapter id
4. insert sections (level 2) with parents resolved through
   chapter key → chapter ref → chapter id, producing
   section key → section id for the provision stage

All key → id tables are local to one ``write()`` call.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from rulebook.db.models import VERSION_INGESTING, DocumentVersion, Section, Sourcebook
from rulebook.db.repository import Repository
from rulebook.ingest.fingerprint import fingerprint, sourcebook_fingerprint
from rulebook.ingest.hierarchy import CollectedChapter, CollectedSection, CollectedSourcebook
from rulebook.ingest.references import parse_source_date

DEFAULT_PUBLIC_BASE = "https://www.handbook.fca.org.uk/handbook"


@dataclass
class PersistedSourcebook:
    """Ids assigned while persisting one sourcebook."""

    sourcebook_id: int
    version_id: int
    content_hash: str
    chapter_ids: dict[str, int] = field(default_factory=dict)
    section_ids_by_key: dict[str, int] = field(default_factory=dict)
    sections_written: int = 0
    sections_dropped: int = 0


class VersionWriter:
    """Persist a CollectedSourcebook as a new version with its chapter/section tree.

    Args:
        repo: Open Repository.
        authority: Owning regulator, e.g. ``FCA``.
        jurisdiction: Jurisdiction stored on the sourcebook, e.g. ``UK``.
        public_base: Public handbook root used for home and source URLs.
    """

    def __init__(
        self,
        repo: Repository,
        authority: str,
        jurisdiction: str | None = None,
        public_base: str = DEFAULT_PUBLIC_BASE,
    ) -> None:
        self._repo = repo
        self._authority = authority
        self._jurisdiction = jurisdiction
        self._public_base = public_base.rstrip("/")

    def home_url(self, code: str) -> str:
        return f"{self._public_base}/{code}/"

    def write(self, book: CollectedSourcebook) -> PersistedSourcebook:
        """Persist *book*; repository failures propagate as PersistenceError."""
        stored = self._repo.upsert_sourcebook(
            Sourcebook(
                authority=self._authority,
                jurisdiction=self._jurisdiction,
                code=book.code,
                title=book.title,
                doc_type="sourcebook",
                home_url=self.home_url(book.code),
                status="active",
            )
        )

        content_hash = sourcebook_fingerprint(book.code, book.last_modified, len(book.chapters))
        effective_date = parse_source_date(book.last_modified)
        version = self._repo.create_version(
            DocumentVersion(
                sourcebook_id=stored.id,
                version_label=book.last_modified,
                effective_date=effective_date,
                published_date=effective_date,
                source_url=self.home_url(book.code),
                content_hash=content_hash,
                status=VERSION_INGESTING,
            )
        )

        result = PersistedSourcebook(
            sourcebook_id=stored.id,
            version_id=version.id,
            content_hash=content_hash,
        )
        seen_refs: set[str] = set()

        # ---- Chapters ----
        chapter_rows = []
        chapter_ref_by_key: dict[str, str] = {}
        for chapter in book.chapters:
            if not _claim_ref(chapter.ref, seen_refs):
                result.sections_dropped += 1
                continue
            chapter_rows.append(_chapter_row(chapter))
            if chapter.key:
                chapter_ref_by_key[chapter.key] = chapter.ref
        result.chapter_ids = self._repo.insert_sections(version.id, chapter_rows)

        # ---- Sections ----
        section_rows = []
        section_ref_by_key: dict[str, str] = {}
        for section in book.sections:
            parent_id = result.chapter_ids.get(chapter_ref_by_key.get(section.parent_key) or "")
            if parent_id is None or not _claim_ref(section.ref, seen_refs):
                result.sections_dropped += 1
                continue
            section_rows.append(_section_row(section, parent_id))
            if section.key:
                section_ref_by_key[section.key] = section.ref
        section_ids = self._repo.insert_sections(version.id, section_rows)

        result.section_ids_by_key = {
            key: section_ids[ref] for key, ref in section_ref_by_key.items() if ref in section_ids
        }
        result.sections_written = len(section_ids)
        return result


# ------------------------------------------------------------------
# Row builders
# ------------------------------------------------------------------


def _claim_ref(ref: str | None, seen: set[str]) -> bool:
    """Canonical refs are unique per version; the first occurrence wins."""
    if not ref or ref in seen:
        return False
    seen.add(ref)
    return True


def _display_text(ref: str | None, title: str | None) -> str | None:
    return " - ".join(part for part in (ref, title) if part) or None


def _chapter_row(chapter: CollectedChapter) -> Section:
    return Section(
        level=1,
        parent_id=None,
        section_number=chapter.ref,
        section_title=chapter.title,
        canonical_ref=chapter.ref,
        path=chapter.path,
        anchor=chapter.anchor,
        text=_display_text(chapter.ref, chapter.title),
        order_index=chapter.order_index,
        content_hash=fingerprint(chapter.ref or chapter.title),
    )


def _section_row(section: CollectedSection, parent_id: int) -> Section:
    return Section(
        level=2,
        parent_id=parent_id,
        section_number=section.ref,
        section_title=section.title,
        canonical_ref=section.ref,
        path=section.path,
        anchor=section.anchor,
        text=_display_text(section.ref, section.title),
        order_index=section.order_index,
        content_hash=fingerprint(section.ref or section.title),
    )
