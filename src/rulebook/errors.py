"""Error taxonomy for rulebook ingestion.

Every ingestion error carries a ``kind`` so that failure classification
survives past the catch boundary and is stored on the IngestRun record:

  transient    — fetch failed after the retry budget was exhausted
  data         — the source returned something that cannot be parsed
  persistence  — the store rejected a write (constraint, I/O, locked DB)
  precondition — the store is not configured or not initialised
  internal     — anything else (programming errors, interrupts)
"""

from __future__ import annotations

import traceback
from dataclasses import asdict, dataclass


class IngestError(Exception):
    """Base class for classified ingestion failures."""

    kind: str = "internal"


class FetchError(IngestError):
    """Raised when a taxonomy request keeps failing after all retry attempts."""

    kind = "transient"

    def __init__(self, message: str, *, url: str | None = None, attempts: int = 0) -> None:
        super().__init__(message)
        self.url = url
        self.attempts = attempts


class MalformedResponseError(IngestError):
    """Raised when the taxonomy API returns a body that is not valid JSON."""

    kind = "data"


class PersistenceError(IngestError):
    """Raised when a repository write fails."""

    kind = "persistence"


class StoreUnavailableError(IngestError):
    """Raised before a run starts when the backing store is missing or uninitialised."""

    kind = "precondition"


class RunStateError(IngestError):
    """Raised on an illegal IngestRun transition (e.g. finishing a run twice)."""


@dataclass(frozen=True)
class RunError:
    """Structured failure attached to a failed IngestRun."""

    kind: str
    message: str
    trace: str | None = None
    cause: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> RunError:
        """Classify *exc* and capture its message, traceback and direct cause."""
        kind = exc.kind if isinstance(exc, IngestError) else "internal"
        trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        cause = repr(exc.__cause__) if exc.__cause__ is not None else None
        return cls(kind=kind, message=str(exc) or type(exc).__name__, trace=trace, cause=cause)

    def to_dict(self) -> dict:
        return asdict(self)
