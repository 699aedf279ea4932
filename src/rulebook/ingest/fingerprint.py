"""Content fingerprints — SHA-256 over an entity's identifying fields.

Fingerprints record change between ingestions; they never decide whether a
new version is written (every run appends a version).
"""

from __future__ import annotations

import hashlib


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def fingerprint(value: str | None) -> str | None:
    """Return the SHA-256 hex digest of *value*, or None for empty input."""
    if not value:
        return None
    return _sha256(value)


def sourcebook_fingerprint(code: str, last_modified: str | None, chapter_count: int) -> str:
    """Fingerprint of a sourcebook snapshot: code, last-modified marker, chapter count."""
    return _sha256(f"{code}:{last_modified or ''}:{chapter_count}")
