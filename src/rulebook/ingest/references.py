"""Reference normalization — turns free-text taxonomy names into stable references.

A chapter name such as ``"SYSC 3 Systems and Controls"`` splits into the
reference ``"SYSC 3"`` and the title ``"Systems and Controls"``. Provision
labels receive a single-letter type suffix (``"3.1"`` + Guidance → ``"3.1G"``).

Nothing in here raises on malformed input: unparseable names degrade to
``None`` fields and callers fall back to raw identifiers.
"""

from __future__ import annotations

import re
from typing import NamedTuple

# Structural words that belong to a reference rather than to a title.
REF_MARKERS: frozenset[str] = frozenset(
    [
        "Annex",
        "Appendix",
        "App",
        "Appx",
        "Sch",
        "Schedule",
        "TP",
        "Part",
        "Chapter",
        "Ch",
        "Module",
        "Section",
        "Subsection",
        "Sub-section",
    ]
)

PROVISION_SUFFIXES: dict[str, str] = {
    "Rules": "R",
    "Rule": "R",
    "Guidance": "G",
    "Evidential": "E",
    "Direction": "D",
    "Decision": "D",
    "Principles": "P",
}

_DIGIT_RE = re.compile(r"\d")
_UPPER_RE = re.compile(r"^[A-Z]+$")
_DATE_RE = re.compile(r"(\d{2})/(\d{2})/(\d{4})")


class NameParts(NamedTuple):
    reference: str | None
    title: str | None


def split_name(name: str | None) -> NameParts:
    """Split a taxonomy node name into ``(reference, title)``.

    The first whitespace-delimited token is the code. Following tokens are
    consumed into the reference while they contain a digit, are a marker word,
    or are an all-uppercase token right after a marker word (``"Annex A"``).
    The first token failing all three starts the title.
    """
    if not name or not name.strip():
        return NameParts(None, None)

    code, *rest = name.split()
    if not rest:
        return NameParts(code, None)

    ref_tokens = [code]
    for index, token in enumerate(rest):
        after_marker = index > 0 and rest[index - 1] in REF_MARKERS
        if (
            _DIGIT_RE.search(token)
            or token in REF_MARKERS
            or (after_marker and _UPPER_RE.match(token))
        ):
            ref_tokens.append(token)
            continue
        break
    else:
        index = len(rest)

    title = " ".join(rest[index:]).strip() or None
    return NameParts(" ".join(ref_tokens), title)


def normalize_provision_ref(label: str | None, provision_type: str | None) -> str | None:
    """Append the provision type's suffix to *label* unless already present.

    Unknown types pass the (stripped) label through unchanged. Idempotent.
    """
    if not label or not label.strip():
        return None
    trimmed = label.strip()
    suffix = PROVISION_SUFFIXES.get(provision_type or "")
    if not suffix or trimmed.endswith(suffix):
        return trimmed
    return f"{trimmed}{suffix}"


def sourcebook_title(name: str | None, code: str | None) -> str | None:
    """Strip a leading *code* from a sourcebook *name*; keep the name if nothing remains."""
    if not name or not name.strip():
        return None
    trimmed = name.strip()
    if not code:
        return trimmed
    first, _, remainder = trimmed.partition(" ")
    if first.upper() == code.upper():
        return remainder.strip() or trimmed
    return trimmed


def path_from_ref(ref: str | None) -> str | None:
    """``"SYSC 3.1"`` → ``"SYSC/3.1"``."""
    if not ref:
        return None
    return re.sub(r"\s+", "/", ref)


def parse_source_date(value: str | None) -> str | None:
    """Extract a ``dd/mm/yyyy`` date from *value* and return it as ISO ``yyyy-mm-dd``."""
    if not value or not isinstance(value, str):
        return None
    match = _DATE_RE.search(value)
    if not match:
        return None
    day, month, year = match.groups()
    return f"{year}-{month}-{day}"
