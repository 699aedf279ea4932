"""Shared pytest fixtures."""

from __future__ import annotations

import copy
import io
import json

import pytest

from rulebook.db.connection import Database
from rulebook.db.schema import initialize
from rulebook.ingest.client import TaxonomyClient

API_BASE = "https://api.handbook.test"

INDEX_URL = f"{API_BASE}/Handbook/GetAllHandbook"


def provisions_url(chapter_key: str) -> str:
    return f"{API_BASE}/Handbook/GetAllHandBookProvisionsSortedOrderByChapter/{chapter_key}"


# Two live sourcebooks (PRIN with two chapters, SYSC with one) and one deleted.
HANDBOOK_INDEX = {
    "Result": {
        "headers": [
            {
                "parts": [
                    {
                        "name": "PRIN Principles for Businesses",
                        "contains": "PRIN",
                        "entityId": "sb-prin",
                        "lastmodifieddate": "01/02/2024",
                        "parts": [
                            {
                                "name": "PRIN 1 Introduction",
                                "entityId": "ch-prin-1",
                                "parts": [
                                    {"name": "PRIN 1.1 Application and purpose", "entityId": "sec-prin-1-1"},
                                ],
                            },
                            {
                                "name": "PRIN 2 The Principles",
                                "entityId": "ch-prin-2",
                                "parts": [
                                    {"name": "PRIN 2.1 The Principles", "entityId": "sec-prin-2-1"},
                                ],
                            },
                        ],
                    },
                    {
                        "name": "SYSC Senior Management Arrangements, Systems and Controls",
                        "contains": "SYSC",
                        "entityId": "sb-sysc",
                        "lastmodifieddate": "15/03/2024",
                        "parts": [
                            {
                                "name": "SYSC 4 General organisational requirements",
                                "entityId": "ch-sysc-4",
                                "parts": [
                                    {"name": "SYSC 4.1 General requirements", "entityId": "sec-sysc-4-1"},
                                ],
                            },
                        ],
                    },
                    {"name": "OLD Withdrawn", "contains": "OLD", "isDeleted": True, "parts": []},
                ]
            }
        ]
    }
}

CHAPTER_PROVISIONS = {
    "ch-prin-1": [
        {
            "sectionId": "sec-prin-1-1",
            "provisionName": "PRIN 1.1.1",
            "provisionType": "Guidance",
            "entityId": "p-prin-1-1-1",
            "contentText": "The Principles apply to every authorised firm.",
        },
        {
            "sectionId": "sec-prin-1-1",
            "provisionName": "PRIN 1.1.2",
            "provisionType": "Rules",
            "provisionTagId": "tag-prin-1-1-2",
            "contentText": "Breaching a Principle makes a firm liable to disciplinary sanctions.",
        },
    ],
    "ch-prin-2": [
        {
            "sectionId": "sec-prin-2-1",
            "provisionName": "PRIN 2.1.1",
            "provisionType": "Rules",
            "entityId": "p-prin-2-1-1",
            "contentText": "A firm must conduct its business with integrity.",
        },
    ],
    "ch-sysc-4": [
        {
            "sectionId": "sec-sysc-4-1",
            "provisionName": "SYSC 4.1.1",
            "provisionType": "Rules",
            "entityId": "p-sysc-4-1-1",
            "contentText": "A firm must have robust governance arrangements.",
        },
    ],
}


class FakeOpener:
    """Stands in for a urllib opener; serves scripted outcomes per URL.

    Each URL maps to a list of outcomes consumed in order; the last one
    repeats. An outcome is an exception (raised), ``bytes`` (returned as the
    body) or any other value (JSON-encoded).
    """

    def __init__(self) -> None:
        self.outcomes: dict[str, list] = {}
        self.requests: list[str] = []

    def add(self, url: str, *outcomes) -> FakeOpener:
        self.outcomes[url] = list(outcomes)
        return self

    def open(self, request, timeout=None):
        url = request.full_url
        self.requests.append(url)
        if url not in self.outcomes:
            raise OSError(f"no route for {url}")
        queue = self.outcomes[url]
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if not isinstance(outcome, bytes):
            outcome = json.dumps(outcome).encode("utf-8")
        return io.BytesIO(outcome)


def handbook_opener(index: dict | None = None, provisions: dict | None = None) -> FakeOpener:
    """FakeOpener serving an index and per-chapter provision lists."""
    opener = FakeOpener()
    opener.add(INDEX_URL, index if index is not None else copy.deepcopy(HANDBOOK_INDEX))
    chapters = provisions if provisions is not None else CHAPTER_PROVISIONS
    for key, items in chapters.items():
        opener.add(provisions_url(key), {"Result": {"provisions": items}})
    return opener


def make_client(opener: FakeOpener, sleeps: list[float] | None = None) -> TaxonomyClient:
    record = sleeps if sleeps is not None else []
    return TaxonomyClient(API_BASE, opener=opener, sleep=record.append)


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".rulebook.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def opener() -> FakeOpener:
    return handbook_opener()


@pytest.fixture
def client(opener) -> TaxonomyClient:
    return make_client(opener)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from ~/.rulebook/config.yaml, ./rulebook.yaml and RULEBOOK_* env."""
    monkeypatch.setattr("rulebook.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global-config.yaml")
    monkeypatch.delenv("RULEBOOK_API_BASE", raising=False)
    monkeypatch.delenv("RULEBOOK_DB", raising=False)
    monkeypatch.chdir(tmp_path)
