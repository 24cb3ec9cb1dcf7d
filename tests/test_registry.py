from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from foreman_mcp.storage import TrackerResult, WorkTracker
from foreman_mcp.work import (
    AgentSession,
    BackendKind,
    WorkKind,
    WorkRecord,
    WorkRegistry,
    build_issues_in_progress,
    build_prs_in_progress,
    build_tickets_in_progress,
    enrich_agent_session,
    enrich_ticket_session,
)
from foreman_mcp.work.registry import detect_issue_id


def _interactive(session_id: str, title: str, status: str = "running"):
    return enrich_ticket_session(
        AgentSession(
            id=session_id,
            backend=BackendKind.INTERACTIVE_SESSION,
            status=status,
            title=title,
            slug=f"slug-{session_id}",
        )
    )


def _subagent(session_id: str, label: str, status: str = "running", summary: str | None = None):
    return enrich_agent_session(
        AgentSession(
            id=session_id,
            backend=BackendKind.SUBAGENT,
            status=status,
            label=label,
            task_summary=summary,
        )
    )


def test_interactive_session_overrides_subagent_for_same_ticket() -> None:
    interactive = [_interactive("ses_1", "COR-1 refactor")]
    subagent = [_subagent("job_1", "dashboard-cor-1")]

    tickets = build_tickets_in_progress(interactive, subagent)

    assert list(tickets) == ["COR-1"]
    assert tickets["COR-1"].backend is BackendKind.INTERACTIVE_SESSION
    assert tickets["COR-1"].session_id == "ses_1"
    assert tickets["COR-1"].label == "slug-ses_1"


def test_session_fans_out_to_every_extracted_id() -> None:
    subagent = [_subagent("job_1", "COR-1 and COR-2", summary="also #5 and PR-6")]

    tickets = build_tickets_in_progress([], subagent)
    prs = build_prs_in_progress([], subagent)

    assert set(tickets) == {"COR-1", "COR-2", "PR-6"}
    assert set(prs) == {5, 6}
    assert all(record.session_id == "job_1" for record in tickets.values())


def test_finished_sessions_are_not_claimable() -> None:
    interactive = [_interactive("ses_1", "COR-1", status="completed")]
    subagent = [
        _subagent("job_1", "fix-pr-9", status="failed"),
        _subagent("job_2", "fix-pr-10", status="idle"),
    ]

    assert build_tickets_in_progress(interactive, []) == {}
    prs = build_prs_in_progress(interactive, subagent)
    assert list(prs) == [10]


def test_rebuilds_never_hold_two_records_per_key() -> None:
    subagent = [_subagent(f"job_{index}", "fix-pr-3") for index in range(4)]
    interactive = [_interactive(f"ses_{index}", "PR #3") for index in range(3)]

    for _ in range(3):
        prs = build_prs_in_progress(interactive, subagent)
        assert list(prs) == [3]
        assert prs[3].backend is BackendKind.INTERACTIVE_SESSION


def test_detect_issue_id_from_labels() -> None:
    assert detect_issue_id("ticket-12") == 12
    assert detect_issue_id("fix-work-indicator-ticket-456") == 456
    assert detect_issue_id("dashboard-chainlink-7") == 7
    assert detect_issue_id("linear-cor-1") is None
    assert detect_issue_id(None) is None


def test_issue_builder_merges_layers_in_order() -> None:
    persisted = {
        1: WorkRecord(backend=BackendKind.SUBAGENT, status="running", label="persisted-1"),
        2: WorkRecord(backend=BackendKind.SUBAGENT, status="running", label="persisted-2"),
    }
    current = {
        2: WorkRecord(backend=BackendKind.CLI_SERVER, status="running", label="current-2"),
        3: WorkRecord(backend=BackendKind.CLI_SERVER, status="running", label="current-3"),
    }
    subagent = [_subagent("job_3", "dashboard-chainlink-3"), _subagent("job_4", "ticket-4", status="completed")]

    issues = build_issues_in_progress(subagent, current, persisted=persisted)

    assert issues[1].label == "persisted-1"
    assert issues[2].label == "current-2"
    assert issues[3].session_id == "job_3"
    assert 4 not in issues


class _Tracker:
    def __init__(self, work: dict[int, WorkRecord] | None = None) -> None:
        self.work = dict(work or {})
        self.synced: list[list[str]] = []

    def get_all_work(self, kind: WorkKind) -> TrackerResult:
        if kind is WorkKind.CHAINLINK_ISSUE:
            return TrackerResult(ok=True, work=dict(self.work))
        return TrackerResult(ok=True)

    def get_work(self, kind: WorkKind, item_id):
        if kind is WorkKind.CHAINLINK_ISSUE:
            return self.work.get(item_id)
        return None

    def sync_with_sessions(self, active_ids) -> TrackerResult:
        self.synced.append(list(active_ids))
        raise RuntimeError("tracker offline")


def test_reconciliation_failures_are_swallowed() -> None:
    tracker = _Tracker()
    registry = WorkRegistry(tracker)

    snapshot = registry.refresh([_interactive("ses_1", "COR-1")], [_subagent("job_1", "ticket-2")])
    registry.last_reconciliation.result(timeout=5)
    registry.shutdown()

    assert tracker.synced == [["ses_1", "job_1"]]
    assert "COR-1" in snapshot.tickets
    assert 2 in snapshot.issues


def test_find_checks_snapshot_then_tracker() -> None:
    tracker = _Tracker({7: WorkRecord(backend=BackendKind.SUBAGENT, status="running", label="persisted")})
    registry = WorkRegistry(tracker)
    fresh = WorkRecord(backend=BackendKind.CLI_SERVER, status="running", label="fresh")

    registry.remember(WorkKind.PULL_REQUEST, 3, fresh)

    assert registry.find(WorkKind.PULL_REQUEST, 3) is fresh
    assert registry.find(WorkKind.CHAINLINK_ISSUE, 7).label == "persisted"
    assert registry.find(WorkKind.LINEAR_TICKET, "COR-1") is None
    registry.shutdown()


def test_stale_persisted_record_is_pruned_and_stays_gone(tmp_path: Path) -> None:
    tracker = WorkTracker(tmp_path / "work.json")
    tracker.start_work(
        WorkKind.CHAINLINK_ISSUE,
        5,
        WorkRecord(backend=BackendKind.SUBAGENT, status="running", session_id="gone", label="ticket-5"),
    )
    registry = WorkRegistry(tracker)

    registry.refresh([], [_subagent("job_1", "ticket-6")])
    registry.last_reconciliation.result(timeout=5)

    assert not tracker.has_work(WorkKind.CHAINLINK_ISSUE, 5)

    snapshot = registry.refresh([], [_subagent("job_1", "ticket-6")])
    registry.last_reconciliation.result(timeout=5)
    assert 5 not in snapshot.issues
    assert 6 in snapshot.issues

    snapshot = registry.refresh([], [_subagent("job_2", "ticket-5")])
    assert snapshot.issues[5].session_id == "job_2"
    registry.shutdown()


def test_persisted_issue_without_session_survives_refresh() -> None:
    record = WorkRecord(backend=BackendKind.CLI_SERVER, status="running", label="chainlink-9")
    registry = WorkRegistry(_Tracker({9: record}))
    registry.remember(WorkKind.CHAINLINK_ISSUE, 9, record)

    snapshot = registry.refresh([], [])
    registry.shutdown()

    assert snapshot.issues[9] is record


def test_failed_listing_skips_reconciliation_and_keeps_claims() -> None:
    tracker = _Tracker()
    registry = WorkRegistry(tracker)
    registry.refresh([_interactive("ses_1", "COR-1 and PR #4")], [_subagent("job_1", "dashboard-cor-2")])
    registry.last_reconciliation.result(timeout=5)
    first_reconciliation = registry.last_reconciliation

    snapshot = registry.refresh(None, [])
    registry.shutdown()

    assert registry.last_reconciliation is first_reconciliation
    assert tracker.synced == [["ses_1", "job_1"]]
    assert snapshot.tickets["COR-1"].session_id == "ses_1"
    assert snapshot.prs[4].session_id == "ses_1"
    assert "COR-2" not in snapshot.tickets


def test_cleanup_runs_once_per_interval(tmp_path: Path) -> None:
    now = datetime(2025, 1, 2, 12, tzinfo=timezone.utc)
    tracker = WorkTracker(tmp_path / "work.json", stale_after=timedelta(hours=24), clock=lambda: now)
    old = (now - timedelta(hours=30)).isoformat()
    tracker.start_work(
        WorkKind.CHAINLINK_ISSUE,
        1,
        WorkRecord(backend=BackendKind.SUBAGENT, status="running", label="chainlink-1", started_at=old),
    )
    ticks = [0.0]
    registry = WorkRegistry(tracker, cleanup_interval=300.0, monotonic=lambda: ticks[0])

    registry.refresh([], [])
    registry.last_cleanup.result(timeout=5)
    assert not tracker.has_work(WorkKind.CHAINLINK_ISSUE, 1)

    tracker.start_work(
        WorkKind.CHAINLINK_ISSUE,
        2,
        WorkRecord(backend=BackendKind.SUBAGENT, status="running", label="chainlink-2", started_at=old),
    )
    ticks[0] = 120.0
    assert registry.schedule_cleanup() is None
    snapshot = registry.refresh([], [])
    assert 2 in snapshot.issues

    ticks[0] = 301.0
    registry.refresh([], [])
    registry.last_cleanup.result(timeout=5)
    snapshot = registry.refresh([], [])
    registry.shutdown()

    assert not tracker.has_work(WorkKind.CHAINLINK_ISSUE, 2)
    assert 2 not in snapshot.issues
