"""Tests for the hierarchy collector."""

from __future__ import annotations

import copy

from conftest import HANDBOOK_INDEX

from rulebook.ingest.hierarchy import collect_sourcebooks, filter_sourcebooks


def _headers(index: dict = HANDBOOK_INDEX) -> list:
    return copy.deepcopy(index["Result"]["headers"])


def test_collect_skips_deleted_sourcebooks():
    books = collect_sourcebooks(_headers())
    assert [b.code for b in books] == ["PRIN", "SYSC"]


def test_collect_sourcebook_fields():
    prin = collect_sourcebooks(_headers())[0]
    assert prin.title == "Principles for Businesses"
    assert prin.entity_id == "sb-prin"
    assert prin.last_modified == "01/02/2024"


def test_collect_chapters_in_source_order():
    prin = collect_sourcebooks(_headers())[0]
    assert [(c.key, c.ref, c.title, c.order_index) for c in prin.chapters] == [
        ("ch-prin-1", "PRIN 1", "Introduction", 0),
        ("ch-prin-2", "PRIN 2", "The Principles", 1),
    ]
    assert prin.chapters[0].path == "PRIN/1"
    assert prin.chapters[0].anchor == "ch-prin-1"


def test_sections_reference_chapter_by_key():
    prin = collect_sourcebooks(_headers())[0]
    assert [(s.key, s.parent_key, s.ref) for s in prin.sections] == [
        ("sec-prin-1-1", "ch-prin-1", "PRIN 1.1"),
        ("sec-prin-2-1", "ch-prin-2", "PRIN 2.1"),
    ]


def test_code_falls_back_to_name_and_is_uppercased():
    headers = [{"parts": [{"name": "cobs Conduct of Business", "parts": []}]}]
    books = collect_sourcebooks(headers)
    assert [b.code for b in books] == ["COBS"]


def test_sourcebook_without_code_is_skipped():
    headers = [{"parts": [{"name": "   ", "parts": []}, {"contains": "GEN", "parts": []}]}]
    assert [b.code for b in collect_sourcebooks(headers)] == ["GEN"]


def test_deleted_chapters_and_sections_skipped_order_index_kept():
    headers = [
        {
            "parts": [
                {
                    "contains": "GEN",
                    "parts": [
                        {"name": "GEN 1 Old", "entityId": "c1", "isDeleted": True},
                        {
                            "name": "GEN 2 Statutory status",
                            "entityId": "c2",
                            "parts": [
                                {"name": "GEN 2.1 Gone", "entityId": "s1", "isDeleted": True},
                                {"name": "GEN 2.2 Kept", "entityId": "s2"},
                            ],
                        },
                    ],
                }
            ]
        }
    ]
    book = collect_sourcebooks(headers)[0]
    assert [(c.ref, c.order_index) for c in book.chapters] == [("GEN 2", 1)]
    assert [(s.ref, s.order_index) for s in book.sections] == [("GEN 2.2", 1)]


def test_chapter_ref_falls_back_to_key_when_name_missing():
    headers = [{"parts": [{"contains": "GEN", "parts": [{"entityId": "abc-1"}]}]}]
    chapter = collect_sourcebooks(headers)[0].chapters[0]
    assert chapter.ref == "ABC-1"
    assert chapter.title is None


def test_irregular_tree_tolerated():
    headers = [
        "not a block",
        {"parts": "not a list"},
        {"parts": [{"contains": "GEN", "parts": [{"name": "GEN 1 Intro", "parts": None}, 42]}]},
    ]
    books = collect_sourcebooks(headers)
    assert [b.code for b in books] == ["GEN"]
    assert [c.ref for c in books[0].chapters] == ["GEN 1"]
    assert books[0].sections == []


def test_collect_non_list_headers_returns_empty():
    assert collect_sourcebooks(None) == []
    assert collect_sourcebooks({"parts": []}) == []


def test_filter_by_codes_case_insensitive():
    books = collect_sourcebooks(_headers())
    assert [b.code for b in filter_sourcebooks(books, [" sysc "])] == ["SYSC"]


def test_filter_limit_applies_after_codes():
    books = collect_sourcebooks(_headers())
    assert [b.code for b in filter_sourcebooks(books, None, limit=1)] == ["PRIN"]
    assert [b.code for b in filter_sourcebooks(books, ["SYSC", "PRIN"], limit=1)] == ["PRIN"]


def test_filter_without_arguments_keeps_everything():
    books = collect_sourcebooks(_headers())
    assert filter_sourcebooks(books) == books
