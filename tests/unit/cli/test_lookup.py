"""Tests for the rulebook lookup and search commands."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import handbook_opener, make_client
from typer.testing import CliRunner

from rulebook.cli.main import app
from rulebook.db.connection import Database
from rulebook.db.repository import Repository
from rulebook.db.schema import initialize
from rulebook.ingest.pipeline import ingest_rulebook

runner = CliRunner(env={"COLUMNS": "200"})


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Store populated from the fake handbook."""
    path = tmp_path / ".rulebook.db"
    conn = Database(path).connect()
    try:
        initialize(conn)
        ingest_rulebook(Repository(conn), make_client(handbook_opener()))
    finally:
        conn.close()
    return path


# ---------------------------------------------------------------------------
# lookup
# ---------------------------------------------------------------------------


def test_lookup_provision(db_path: Path) -> None:
    result = runner.invoke(app, ["lookup", "PRIN 2.1.1R", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "paragraph" in result.output
    assert "integrity" in result.output
    assert "PRIN 2.1 - The Principles" in result.output


def test_lookup_section(db_path: Path) -> None:
    result = runner.invoke(app, ["lookup", "SYSC 4", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "section" in result.output
    assert "General organisational requirements" in result.output


def test_lookup_not_found(db_path: Path) -> None:
    result = runner.invoke(app, ["lookup", "PRIN 2.1.1G", "--db", str(db_path)])

    assert result.exit_code == 1
    assert "Reference not found" in result.output


def test_lookup_without_db(tmp_path: Path) -> None:
    result = runner.invoke(app, ["lookup", "PRIN 2.1.1R", "--db", str(tmp_path / "missing.db")])
    assert result.exit_code == 1
    assert "rulebook init" in result.output


# ---------------------------------------------------------------------------
# search
# ---------------------------------------------------------------------------


def test_search_finds_provision(db_path: Path) -> None:
    result = runner.invoke(app, ["search", "integrity", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "PRIN 2.1.1R" in result.output


def test_search_limit(db_path: Path) -> None:
    result = runner.invoke(app, ["search", "firm", "--limit", "1", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert result.output.count("paragraph") + result.output.count("section") == 1


def test_search_no_matches(db_path: Path) -> None:
    result = runner.invoke(app, ["search", "zeppelin", "--db", str(db_path)])
    assert result.exit_code == 0
    assert "No matches" in result.output


def test_search_operator_words_do_not_crash(db_path: Path) -> None:
    for query in ("NOT", "firm OR", "governance AND"):
        result = runner.invoke(app, ["search", query, "--db", str(db_path)])
        assert result.exit_code == 0, result.output
        assert "No matches" in result.output
