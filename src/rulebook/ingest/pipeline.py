"""End-to-end rulebook ingestion: index → hierarchy → versions → provisions.

Partial-failure policy is chosen by the caller:

- ``keep_going=False`` (single-run default): the first sourcebook failure
  fails the whole run.
- ``keep_going=True`` (batch driver): a sourcebook that raises an
  IngestError is recorded in ``stats.failed_sourcebooks`` and the run moves
  on to the next sourcebook. Failures of the index fetch, and anything that
  is not an IngestError, still fail the run.

Each sourcebook is written as a new version in ``ingesting`` state and only
marked ``active`` (readable by lookup, search and counts) after its provisions
are stored, so a failed sourcebook never hides the previous complete version.
Its counters are merged into the run statistics only on success.

In both modes the IngestRun row is finalized before the error leaves this module.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from rulebook.db.models import VERSION_ACTIVE, VERSION_FAILED
from rulebook.db.repository import Repository
from rulebook.errors import IngestError, PersistenceError, RunError
from rulebook.ingest.client import TaxonomyClient
from rulebook.ingest.hierarchy import (
    CollectedSourcebook,
    collect_sourcebooks,
    filter_sourcebooks,
)
from rulebook.ingest.provisions import ProvisionIngestor
from rulebook.ingest.runs import IngestStats, RunTracker
from rulebook.ingest.versions import DEFAULT_PUBLIC_BASE, VersionWriter

DEFAULT_AUTHORITY = "FCA"
DEFAULT_JURISDICTION = "UK"


def ingest_rulebook(
    repo: Repository,
    client: TaxonomyClient,
    *,
    authority: str = DEFAULT_AUTHORITY,
    jurisdiction: str | None = DEFAULT_JURISDICTION,
    public_base: str = DEFAULT_PUBLIC_BASE,
    sourcebooks: Iterable[str] | None = None,
    max_sourcebooks: int | None = None,
    max_chapters: int | None = None,
    keep_going: bool = False,
    log: Callable[[str], None] | None = None,
) -> IngestStats:
    """Run one audited ingestion and return its statistics.

    Args:
        repo: Open Repository on an initialised store.
        client: Taxonomy client.
        authority: Regulator recorded on sourcebooks and the run.
        jurisdiction: Jurisdiction recorded on sourcebooks.
        public_base: Public handbook root for home / source URLs.
        sourcebooks: Optional codes to restrict the run to (case-insensitive).
        max_sourcebooks: Optional cap on the number of sourcebooks.
        max_chapters: Optional cap on chapters fetched per sourcebook.
        keep_going: Record per-sourcebook failures and continue (see module doc).
        log: Progress callback; nothing is printed when omitted.

    Raises:
        StoreUnavailableError: The store is not initialised (raised before the
            run row is created or any fetch happens).
        IngestError: Fetch, data or persistence failure that failed the run.
    """
    repo.ensure_ready()
    emit = log or _silent
    codes = list(sourcebooks or [])

    tracker = RunTracker(repo, authority, client.base_url)
    tracker.start()
    stats = IngestStats()

    try:
        emit("Fetching handbook index...")
        collected = collect_sourcebooks(client.fetch_index())
        books = filter_sourcebooks(collected, codes, max_sourcebooks)
        _report_unknown_codes(codes, collected, emit)

        writer = VersionWriter(repo, authority, jurisdiction, public_base)
        ingestor = ProvisionIngestor(client, repo)

        for book in books:
            try:
                _ingest_sourcebook(book, repo, writer, ingestor, stats, max_chapters, emit)
            except IngestError as exc:
                if not keep_going:
                    raise
                stats.failed_sourcebooks.append(
                    {"code": book.code, "kind": exc.kind, "message": str(exc)}
                )
                emit(f"  {book.code} failed ({exc.kind}): {exc}")
    except BaseException as exc:
        tracker.fail(stats, RunError.from_exception(exc))
        raise

    tracker.complete(stats)
    return stats


def _ingest_sourcebook(
    book: CollectedSourcebook,
    repo: Repository,
    writer: VersionWriter,
    ingestor: ProvisionIngestor,
    stats: IngestStats,
    max_chapters: int | None,
    emit: Callable[[str], None],
) -> None:
    emit(f"Ingesting {book.code} ({book.title or 'Untitled'})")
    book_stats = IngestStats(sourcebooks=1)
    persisted = writer.write(book)
    book_stats.sections += persisted.sections_written
    book_stats.dropped_sections += persisted.sections_dropped
    try:
        ingestor.ingest(
            book, persisted.section_ids_by_key, book_stats, max_chapters=max_chapters, log=emit
        )
    except IngestError as exc:
        # A store that rejects writes cannot record the failure either.
        if not isinstance(exc, PersistenceError):
            repo.set_version_status(persisted.version_id, VERSION_FAILED)
        raise
    repo.set_version_status(persisted.version_id, VERSION_ACTIVE)
    stats.merge(book_stats)


def _report_unknown_codes(
    codes: list[str], collected: list[CollectedSourcebook], emit: Callable[[str], None]
) -> None:
    known = {b.code for b in collected}
    unknown = sorted({c.strip().upper() for c in codes if c.strip()} - known)
    if unknown:
        emit(f"Not in handbook index: {', '.join(unknown)}")


def _silent(message: str) -> None:
    pass
