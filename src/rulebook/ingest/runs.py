"""Ingest run tracking — one audited record per pipeline execution.

States::

    running ──complete()──▶ completed
       └─────fail()───────▶ failed   (+ structured RunError)

The ``running`` row is written before any fetch. Exactly one terminal
transition is allowed; callers finalize inside an except/else pair that
catches BaseException so an unwinding process never leaves a run running.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from rulebook.db.repository import Repository
from rulebook.errors import RunError, RunStateError

RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"


@dataclass
class IngestStats:
    """Counters accumulated during one run."""

    sourcebooks: int = 0
    chapters: int = 0
    sections: int = 0
    provisions: int = 0
    dropped_sections: int = 0
    dropped_provisions: int = 0
    failed_sourcebooks: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    def merge(self, other: IngestStats) -> None:
        """Add *other*'s counters into this one."""
        self.sourcebooks += other.sourcebooks
        self.chapters += other.chapters
        self.sections += other.sections
        self.provisions += other.provisions
        self.dropped_sections += other.dropped_sections
        self.dropped_provisions += other.dropped_provisions
        self.failed_sourcebooks.extend(other.failed_sourcebooks)


class RunTracker:
    """Drive the lifecycle of one IngestRun row.

    Args:
        repo: Open Repository.
        authority: Regulator the run ingests, e.g. ``FCA``.
        source: API base URL recorded on the run.
    """

    def __init__(self, repo: Repository, authority: str, source: str | None = None) -> None:
        self._repo = repo
        self.authority = authority
        self.source = source
        self.run_id: int | None = None
        self.status: str | None = None

    def start(self) -> int:
        """Create the run in ``running`` state and return its id."""
        if self.run_id is not None:
            raise RunStateError(f"Run {self.run_id} has already been started.")
        self.run_id = self._repo.create_run(self.authority, self.source)
        self.status = RUNNING
        return self.run_id

    def complete(self, stats: IngestStats) -> None:
        self._finish(COMPLETED, stats, None)

    def fail(self, stats: IngestStats, error: RunError) -> None:
        self._finish(FAILED, stats, error)

    def _finish(self, status: str, stats: IngestStats, error: RunError | None) -> None:
        if self.run_id is None:
            raise RunStateError("Run has not been started.")
        if self.status != RUNNING:
            raise RunStateError(f"Run {self.run_id} is already {self.status}.")
        self._repo.finish_run(
            self.run_id,
            status,
            stats.to_dict(),
            error.to_dict() if error else None,
        )
        self.status = status
