"""Provision ingestion — leaf provisions fetched and persisted per chapter."""

from __future__ import annotations

from collections.abc import Callable, Mapping

from rulebook.db.models import Paragraph
from rulebook.db.repository import Repository
from rulebook.ingest.client import TaxonomyClient
from rulebook.ingest.fingerprint import fingerprint
from rulebook.ingest.hierarchy import CollectedSourcebook
from rulebook.ingest.references import normalize_provision_ref
from rulebook.ingest.runs import IngestStats


def build_paragraphs(provisions: list[dict]) -> list[Paragraph]:
    """Convert raw provision dicts to unsaved Paragraphs, skipping deleted ones."""
    paragraphs: list[Paragraph] = []
    for item in provisions:
        if item.get("isDeleted"):
            continue
        text = item.get("contentText") or None
        html = item.get("contentType") or None
        paragraphs.append(
            Paragraph(
                section_key=item.get("sectionId") or None,
                paragraph_number=item.get("provisionName") or None,
                canonical_ref=normalize_provision_ref(
                    item.get("provisionName"), item.get("provisionType")
                ),
                anchor=item.get("entityId") or item.get("provisionTagId") or None,
                text=text,
                html=html,
                content_hash=fingerprint(text or html),
            )
        )
    return paragraphs


class ProvisionIngestor:
    """Fetch each chapter's provisions and attach them to persisted sections.

    Args:
        client: Taxonomy client used for the per-chapter fetch.
        repo: Open Repository.
    """

    def __init__(self, client: TaxonomyClient, repo: Repository) -> None:
        self._client = client
        self._repo = repo

    def ingest(
        self,
        book: CollectedSourcebook,
        section_ids: Mapping[str, int],
        stats: IngestStats,
        max_chapters: int | None = None,
        log: Callable[[str], None] | None = None,
    ) -> int:
        """Ingest provisions chapter by chapter; returns the number inserted.

        Chapters without a transient key are skipped and do not count toward
        *max_chapters*. Provisions whose section key does not resolve through
        *section_ids* are dropped and counted in ``stats.dropped_provisions``.
        """
        inserted_total = 0
        processed = 0
        for chapter in book.chapters:
            if not chapter.key:
                continue
            if max_chapters is not None and max_chapters > 0 and processed >= max_chapters:
                break
            processed += 1
            stats.chapters += 1
            if log:
                log(f"  Fetching provisions for {chapter.ref}")

            provisions = self._client.fetch_chapter_provisions(chapter.key)
            if not provisions:
                continue

            paragraphs = build_paragraphs(provisions)
            if not paragraphs:
                continue

            inserted = self._repo.insert_paragraphs(section_ids, paragraphs)
            stats.provisions += len(inserted)
            stats.dropped_provisions += len(paragraphs) - len(inserted)
            inserted_total += len(inserted)
        return inserted_total
