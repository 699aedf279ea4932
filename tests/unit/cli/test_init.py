"""Tests for rulebook init and the version commands."""

from __future__ import annotations

from pathlib import Path

import yaml
from typer.testing import CliRunner

from rulebook.cli.main import app
from rulebook.config import PROJECT_CONFIG_NAME
from rulebook.db.connection import Database
from rulebook.db.schema import missing_tables

runner = CliRunner(env={"COLUMNS": "200"})


def _tables_missing(db_path: Path) -> list[str]:
    conn = Database(db_path).connect()
    try:
        return missing_tables(conn)
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


def test_init_creates_db_and_config(tmp_path: Path) -> None:
    project = tmp_path / "project"
    result = runner.invoke(app, ["init", str(project)])

    assert result.exit_code == 0, result.output
    assert _tables_missing(project / ".rulebook.db") == []
    cfg = yaml.safe_load((project / PROJECT_CONFIG_NAME).read_text(encoding="utf-8"))
    assert cfg["ingest"]["authority"] == "FCA"
    assert "rulebook ingest" in result.output


def test_init_custom_db_path(tmp_path: Path) -> None:
    result = runner.invoke(app, ["init", str(tmp_path), "--db", "store/handbook.db"])

    assert result.exit_code == 0, result.output
    assert _tables_missing(tmp_path / "store" / "handbook.db") == []


def test_init_is_idempotent_and_preserves_data(tmp_path: Path) -> None:
    runner.invoke(app, ["init", str(tmp_path)])
    conn = Database(tmp_path / ".rulebook.db").connect()
    conn.execute("INSERT INTO sourcebooks (authority, code) VALUES ('FCA', 'SYSC')")
    conn.commit()
    conn.close()

    result = runner.invoke(app, ["init", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert "data preserved" in result.output
    conn = Database(tmp_path / ".rulebook.db").connect()
    assert conn.execute("SELECT COUNT(*) FROM sourcebooks").fetchone()[0] == 1
    conn.close()


def test_init_keeps_existing_project_config(tmp_path: Path) -> None:
    (tmp_path / PROJECT_CONFIG_NAME).write_text("database:\n  path: mine.db\n", encoding="utf-8")

    result = runner.invoke(app, ["init", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert (tmp_path / PROJECT_CONFIG_NAME).read_text(encoding="utf-8") == "database:\n  path: mine.db\n"
    assert _tables_missing(tmp_path / "mine.db") == []


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("rulebook ")


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("rulebook ")
