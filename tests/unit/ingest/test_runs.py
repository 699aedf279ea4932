"""Tests for ingest run tracking."""

from __future__ import annotations

import pytest

from rulebook.db.repository import Repository
from rulebook.errors import FetchError, RunError, RunStateError
from rulebook.ingest.runs import COMPLETED, FAILED, RUNNING, IngestStats, RunTracker


def _tracker(conn) -> tuple[RunTracker, Repository]:
    repo = Repository(conn)
    return RunTracker(repo, "FCA", "https://api.handbook.test"), repo


def test_start_creates_running_row(tmp_db):
    tracker, repo = _tracker(tmp_db)
    run_id = tracker.start()

    run = repo.get_run(run_id)
    assert run.status == RUNNING
    assert run.authority == "FCA"
    assert run.source == "https://api.handbook.test"
    assert run.started_at is not None
    assert run.ended_at is None


def test_complete_records_stats(tmp_db):
    tracker, repo = _tracker(tmp_db)
    run_id = tracker.start()
    tracker.complete(IngestStats(sourcebooks=2, chapters=3, sections=4, provisions=5, dropped_provisions=1))

    run = repo.get_run(run_id)
    assert run.status == COMPLETED
    assert run.ended_at is not None
    assert run.stats["provisions"] == 5
    assert run.stats["dropped_provisions"] == 1
    assert run.stats["failed_sourcebooks"] == []
    assert run.error == {}


def test_fail_records_structured_error(tmp_db):
    tracker, repo = _tracker(tmp_db)
    run_id = tracker.start()
    try:
        try:
            raise OSError("connection reset")
        except OSError as cause:
            raise FetchError("GET /index failed after 3 attempt(s)") from cause
    except FetchError as exc:
        tracker.fail(IngestStats(sourcebooks=1), RunError.from_exception(exc))

    run = repo.get_run(run_id)
    assert run.status == FAILED
    assert run.stats["sourcebooks"] == 1
    assert run.error["kind"] == "transient"
    assert run.error["message"] == "GET /index failed after 3 attempt(s)"
    assert "FetchError" in run.error["trace"]
    assert "connection reset" in run.error["cause"]


def test_finishing_twice_raises(tmp_db):
    tracker, _ = _tracker(tmp_db)
    tracker.start()
    tracker.complete(IngestStats())
    with pytest.raises(RunStateError):
        tracker.fail(IngestStats(), RunError(kind="internal", message="late"))


def test_finish_before_start_raises(tmp_db):
    tracker, _ = _tracker(tmp_db)
    with pytest.raises(RunStateError):
        tracker.complete(IngestStats())


def test_start_twice_raises(tmp_db):
    tracker, _ = _tracker(tmp_db)
    tracker.start()
    with pytest.raises(RunStateError):
        tracker.start()


def test_run_error_classifies_unknown_exceptions_as_internal():
    error = RunError.from_exception(KeyError("sectionId"))
    assert error.kind == "internal"
    assert error.cause is None
    assert error.to_dict()["message"] == "'sectionId'"


def test_run_error_message_falls_back_to_type_name():
    assert RunError.from_exception(KeyboardInterrupt()).message == "KeyboardInterrupt"


def test_latest_run_is_most_recent(tmp_db):
    repo = Repository(tmp_db)
    first = RunTracker(repo, "FCA")
    first.start()
    first.complete(IngestStats())
    second = RunTracker(repo, "FCA")
    second_id = second.start()

    assert repo.get_latest_run("FCA").id == second_id
    assert repo.get_latest_run("PRA") is None


def test_stats_merge_adds_counters():
    total = IngestStats(sourcebooks=1, chapters=2, provisions=5)
    total.merge(IngestStats(sourcebooks=1, chapters=1, sections=3, dropped_provisions=1))

    assert total.to_dict() == {
        "sourcebooks": 2,
        "chapters": 3,
        "sections": 3,
        "provisions": 5,
        "dropped_sections": 0,
        "dropped_provisions": 1,
        "failed_sourcebooks": [],
    }
