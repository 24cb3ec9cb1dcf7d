from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

from foreman_mcp.storage import WorkTracker
from foreman_mcp.work import BackendKind, WorkKind, WorkRecord


def _record(session_id: str | None = None, **kwargs) -> WorkRecord:
    return WorkRecord(backend=BackendKind.SUBAGENT, status="running", session_id=session_id, **kwargs)


def test_start_work_persists_and_reloads(tmp_path: Path) -> None:
    path = tmp_path / "work.json"
    tracker = WorkTracker(path, clock=lambda: datetime(2025, 1, 1, tzinfo=timezone.utc))

    result = tracker.start_work(WorkKind.CHAINLINK_ISSUE, 12, _record("job-1", label="chainlink-12"))

    assert result.ok
    assert result.work[12].started_at == "2025-01-01T00:00:00+00:00"

    reloaded = WorkTracker(path)
    record = reloaded.get_work(WorkKind.CHAINLINK_ISSUE, 12)
    assert record is not None
    assert record.label == "chainlink-12"
    assert record.backend is BackendKind.SUBAGENT

    document = json.loads(path.read_text(encoding="utf-8"))
    assert "12" in document["chainlink_issue"]


def test_kinds_do_not_collide(tmp_path: Path) -> None:
    tracker = WorkTracker(tmp_path / "work.json")

    tracker.start_work(WorkKind.CHAINLINK_ISSUE, 5, _record(label="issue"))
    tracker.start_work(WorkKind.PULL_REQUEST, 5, _record(label="pr"))

    assert tracker.get_work(WorkKind.CHAINLINK_ISSUE, 5).label == "issue"
    assert tracker.get_work(WorkKind.PULL_REQUEST, "5").label == "pr"
    assert not tracker.has_work(WorkKind.LINEAR_TICKET, "COR-5")


def test_start_work_upserts_single_record(tmp_path: Path) -> None:
    tracker = WorkTracker(tmp_path / "work.json")

    tracker.start_work(WorkKind.LINEAR_TICKET, "COR-1", _record(label="first"))
    tracker.start_work(WorkKind.LINEAR_TICKET, "COR-1", _record(label="second"))

    work = tracker.get_all_work(WorkKind.LINEAR_TICKET).work
    assert list(work) == ["COR-1"]
    assert work["COR-1"].label == "second"


def test_complete_work_removes_entry(tmp_path: Path) -> None:
    tracker = WorkTracker(tmp_path / "work.json")
    tracker.start_work(WorkKind.PULL_REQUEST, 9, _record())

    result = tracker.complete_work(WorkKind.PULL_REQUEST, 9)
    missing = tracker.complete_work(WorkKind.PULL_REQUEST, 9)

    assert result.ok and result.removed == [9]
    assert missing.ok and missing.removed == []
    assert WorkTracker(tmp_path / "work.json").get_work(WorkKind.PULL_REQUEST, 9) is None


def test_sync_with_sessions_keeps_sessionless_entries(tmp_path: Path) -> None:
    tracker = WorkTracker(tmp_path / "work.json")
    tracker.start_work(WorkKind.CHAINLINK_ISSUE, 1, _record("alive"))
    tracker.start_work(WorkKind.CHAINLINK_ISSUE, 2, _record("dead"))
    tracker.start_work(WorkKind.CHAINLINK_ISSUE, 3, _record(None, job_id="job-3"))

    result = tracker.sync_with_sessions(["alive"])

    assert result.ok
    assert result.removed == [2]
    assert set(tracker.get_all_work(WorkKind.CHAINLINK_ISSUE).work) == {1, 3}


def test_cleanup_stale_drops_old_entries(tmp_path: Path) -> None:
    now = datetime(2025, 1, 2, 12, tzinfo=timezone.utc)
    tracker = WorkTracker(tmp_path / "work.json", stale_after=timedelta(hours=24), clock=lambda: now)
    tracker.start_work(WorkKind.LINEAR_TICKET, "COR-1", _record(started_at=(now - timedelta(hours=30)).isoformat()))
    tracker.start_work(WorkKind.LINEAR_TICKET, "COR-2", _record(started_at=(now - timedelta(hours=2)).isoformat()))

    result = tracker.cleanup_stale()

    assert result.removed == ["COR-1"]
    assert tracker.has_work(WorkKind.LINEAR_TICKET, "COR-2")


def test_malformed_file_starts_empty(tmp_path: Path) -> None:
    path = tmp_path / "work.json"
    path.write_text("{not json", encoding="utf-8")

    tracker = WorkTracker(path)

    assert tracker.get_all_work(WorkKind.LINEAR_TICKET).work == {}


def test_save_failure_is_reported_and_rolled_back(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    tracker = WorkTracker(blocker / "work.json")

    result = tracker.start_work(WorkKind.PULL_REQUEST, 4, _record())

    assert not result.ok
    assert result.error
    assert not tracker.has_work(WorkKind.PULL_REQUEST, 4)


def test_failed_prune_keeps_entries_in_memory(tmp_path: Path, monkeypatch) -> None:
    now = datetime(2025, 1, 2, 12, tzinfo=timezone.utc)
    tracker = WorkTracker(tmp_path / "work.json", stale_after=timedelta(hours=24), clock=lambda: now)
    tracker.start_work(WorkKind.CHAINLINK_ISSUE, 1, _record("dead"))
    tracker.start_work(WorkKind.LINEAR_TICKET, "COR-1", _record(started_at=(now - timedelta(hours=30)).isoformat()))
    tracker.start_work(WorkKind.PULL_REQUEST, 2, _record())
    monkeypatch.setattr(tracker, "_save", lambda: "disk full")

    synced = tracker.sync_with_sessions([])
    expired = tracker.cleanup_stale()
    completed = tracker.complete_work(WorkKind.PULL_REQUEST, 2)

    assert (synced.ok, synced.error) == (False, "disk full")
    assert not expired.ok
    assert not completed.ok
    assert tracker.get_work(WorkKind.CHAINLINK_ISSUE, 1).session_id == "dead"
    assert tracker.has_work(WorkKind.LINEAR_TICKET, "COR-1")
    assert tracker.has_work(WorkKind.PULL_REQUEST, 2)
