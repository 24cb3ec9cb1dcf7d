from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from foreman_mcp.agents import PreferenceStore
from foreman_mcp.backends import CliExecutionResult, CliServer, FakeCliRunner, SessionHandle, SubagentSpawner
from foreman_mcp.dispatch import WorkDispatcher
from foreman_mcp.storage import ActivityLog, WorkTracker
from foreman_mcp.tools import register_tools
from foreman_mcp.validation import ValidationError
from foreman_mcp.work import BackendKind, WorkItem, WorkKind, WorkRecord, WorkRegistry


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class StubSessions:
    def __init__(self) -> None:
        self.prompts: list[str] = []

    async def send_task(self, prompt: str, model: str | None = None) -> SessionHandle:
        self.prompts.append(prompt)
        return SessionHandle(session_id=f"ses_{len(self.prompts)}", slug="quiet-heron")

    async def list_sessions(self):
        return []


class StubTickets:
    def fetch_items(self):
        return [
            WorkItem(kind=WorkKind.LINEAR_TICKET, id="COR-1", title="Claimed"),
            WorkItem(kind=WorkKind.LINEAR_TICKET, id="COR-2", title="Open"),
            WorkItem(kind=WorkKind.CHAINLINK_ISSUE, id=4, title="Issue"),
        ]


class StubPullRequests:
    def fetch_open_prs(self):
        return [WorkItem(kind=WorkKind.PULL_REQUEST, id=8, repo="acme/app", branch="fix")]


def _ok(stdout: str = "") -> CliExecutionResult:
    return CliExecutionResult(args=(), returncode=0, stdout=stdout, stderr="")


def _setup(tmp_path: Path, *, spawner_responses=None, cli_responses=None):
    tracker = WorkTracker(tmp_path / "work.json")
    registry = WorkRegistry(tracker)
    preferences = PreferenceStore(tmp_path / "prefs.json")
    cli_server = CliServer(FakeCliRunner(cli_responses, program="gemini"))
    dispatcher = WorkDispatcher(
        registry,
        spawner=SubagentSpawner(FakeCliRunner(spawner_responses, program="openclaw")),
        session_client=StubSessions(),
        cli_server=cli_server,
        activity=ActivityLog(),
        preferences=preferences,
    )
    server = StubServer()
    handles = register_tools(
        server,
        dispatcher=dispatcher,
        preferences=preferences,
        cli_server=cli_server,
        ticket_source=StubTickets(),
        pr_source=StubPullRequests(),
    )
    return server, handles, dispatcher


def test_register_tools_exposes_expected_names(tmp_path: Path) -> None:
    server, _, dispatcher = _setup(tmp_path)
    dispatcher.registry.shutdown()

    assert set(server._tools) == {
        "dispatch_work",
        "request_review",
        "work_in_progress",
        "complete_work",
        "agent_preferences",
        "set_agent_preferences",
        "recent_activity",
        "cli_server_control",
        "available_work",
    }


def test_dispatch_work_with_agent_override(tmp_path: Path) -> None:
    _, handles, dispatcher = _setup(tmp_path)

    payload = asyncio.run(
        handles.dispatch_work.fn(kind="linear_ticket", item_id="COR-7", title="Add search", agent="opencode")
    )
    duplicate = asyncio.run(handles.dispatch_work.fn(kind="linear_ticket", item_id="COR-7", agent="opencode"))
    dispatcher.registry.shutdown()

    assert payload["ok"] is True
    assert payload["agent"] == "opencode"
    assert payload["record"]["backend"] == "interactive_session"
    assert payload["record"]["label"] == "quiet-heron"
    assert duplicate["ok"] is False
    assert duplicate["error"]["code"] == "already_in_progress"
    assert duplicate["error"]["existing"]["session_id"] == "ses_1"


def test_dispatch_work_rejects_bad_input(tmp_path: Path) -> None:
    _, handles, dispatcher = _setup(tmp_path)

    with pytest.raises(ValidationError):
        asyncio.run(handles.dispatch_work.fn(kind="linear_ticket", item_id="COR-1; rm -rf /"))
    with pytest.raises(ValidationError):
        asyncio.run(handles.dispatch_work.fn(kind="pull_request", item_id=3, agent="codex"))
    with pytest.raises(ValidationError):
        asyncio.run(handles.dispatch_work.fn(kind="jira_ticket", item_id="COR-1"))
    with pytest.raises(ValidationError):
        asyncio.run(handles.dispatch_work.fn(kind="pull_request", item_id=3, branch="main && curl evil"))
    dispatcher.registry.shutdown()

    assert dispatcher.activity.get_events() == []


def test_work_in_progress_includes_persisted_entries(tmp_path: Path) -> None:
    _, handles, dispatcher = _setup(tmp_path)
    dispatcher.registry.tracker.start_work(
        WorkKind.CHAINLINK_ISSUE,
        11,
        WorkRecord(backend=BackendKind.CLI_SERVER, status="running", label="chainlink-11"),
    )

    payload = asyncio.run(handles.work_in_progress.fn())
    issues_only = asyncio.run(handles.work_in_progress.fn(kind="chainlink_issue"))
    dispatcher.registry.shutdown()

    assert payload["chainlink_issue"]["11"]["label"] == "chainlink-11"
    assert payload["linear_ticket"] == {}
    assert list(issues_only) == ["chainlink_issue"]


def test_complete_work_releases_item(tmp_path: Path) -> None:
    _, handles, dispatcher = _setup(tmp_path)
    asyncio.run(handles.dispatch_work.fn(kind="chainlink_issue", item_id="3", agent="opencode"))

    result = handles.complete_work.fn(kind="chainlink_issue", item_id=3)
    dispatcher.registry.shutdown()

    assert result == {"ok": True, "kind": "chainlink_issue", "item_id": 3}
    assert not dispatcher.registry.tracker.has_work(WorkKind.CHAINLINK_ISSUE, 3)
    assert [entry["type"] for entry in handles.recent_activity.fn()] == ["work_completed", "task_started"]
    assert [entry["type"] for entry in handles.recent_activity.fn(event_type="task_started")] == ["task_started"]


def test_preference_tools(tmp_path: Path) -> None:
    _, handles, dispatcher = _setup(tmp_path)
    dispatcher.registry.shutdown()

    toggled = handles.set_agent_preferences.fn(toggle=True)
    updated = handles.set_agent_preferences.fn(agent_mode="single", model_agent="gemini", model="gemini-2.5-pro")

    assert toggled["coding_agent"] == "claude"
    assert updated["agent_mode"] == "single"
    assert updated["models"] == {"gemini": "gemini-2.5-pro"}
    assert handles.agent_preferences.fn() == updated
    with pytest.raises(ValidationError):
        handles.set_agent_preferences.fn(agent_mode="random")
    with pytest.raises(ValidationError):
        handles.set_agent_preferences.fn(coding_agent="codex")


def test_request_review_tool(tmp_path: Path) -> None:
    _, handles, dispatcher = _setup(tmp_path, spawner_responses=[_ok(json.dumps({"id": "job-3"}))])

    payload = asyncio.run(handles.request_review.fn(kind="pull_request", item_id=8, repo="acme/app"))
    dispatcher.registry.shutdown()

    assert payload["ok"] is True
    assert payload["record"]["job_id"] == "job-3"
    assert not dispatcher.registry.tracker.has_work(WorkKind.PULL_REQUEST, 8)


def test_cli_server_control(tmp_path: Path) -> None:
    _, handles, dispatcher = _setup(tmp_path, cli_responses=[_ok("0.9.0")])
    dispatcher.registry.shutdown()

    started = asyncio.run(handles.cli_server_control.fn(action="start"))
    stopped = asyncio.run(handles.cli_server_control.fn(action="stop"))

    assert started["running"] is True
    assert started["version"] == "0.9.0"
    assert stopped["running"] is False


def test_available_work_skips_claimed_items(tmp_path: Path) -> None:
    _, handles, dispatcher = _setup(tmp_path)
    asyncio.run(handles.dispatch_work.fn(kind="linear_ticket", item_id="COR-1", agent="opencode"))

    available = asyncio.run(handles.available_work.fn())
    prs = asyncio.run(handles.available_work.fn(kind="pull_request"))
    dispatcher.registry.shutdown()

    assert [(entry["kind"], entry["id"]) for entry in available] == [
        ("linear_ticket", "COR-2"),
        ("chainlink_issue", 4),
        ("pull_request", 8),
    ]
    assert [entry["id"] for entry in prs] == [8]
