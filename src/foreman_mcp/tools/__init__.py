"""Tool registration for Foreman MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from fastmcp import Context, FastMCP

from ..agents.models import AgentMode, DistributionPolicy
from ..agents.preferences import VALID_AGENTS, PreferenceStore
from ..backends.cli_server import CliServer
from ..dispatch import WorkDispatcher
from ..validation import (
    ValidationError,
    validate_agent_name,
    validate_branch_name,
    validate_chainlink_issue_id,
    validate_linear_ticket_id,
    validate_model_name,
    validate_pr_number,
    validate_prompt,
)
from ..work.models import ItemId, WorkItem, WorkKind
from ..work.sources import PullRequestSource, TicketSource, collect_items, unclaimed_items

logger = logging.getLogger(__name__)

KindName = Literal["linear_ticket", "chainlink_issue", "pull_request"]


@dataclass(slots=True)
class ToolHandles:
    dispatch_work: Any
    request_review: Any
    work_in_progress: Any
    complete_work: Any
    agent_preferences: Any
    set_agent_preferences: Any
    recent_activity: Any
    cli_server_control: Any
    available_work: Any


def _resolve_item_id(kind: WorkKind, item_id: Any) -> ItemId:
    if kind is WorkKind.LINEAR_TICKET:
        return validate_linear_ticket_id(item_id)
    if kind is WorkKind.CHAINLINK_ISSUE:
        return validate_chainlink_issue_id(item_id)
    return validate_pr_number(item_id)


def _resolve_kind(kind: str) -> WorkKind:
    try:
        return WorkKind(kind)
    except ValueError as exc:
        raise ValidationError(f"Unknown work kind '{kind}'") from exc


def register_tools(
    server: FastMCP,
    *,
    dispatcher: WorkDispatcher,
    preferences: PreferenceStore,
    cli_server: CliServer | None = None,
    ticket_source: TicketSource | None = None,
    pr_source: PullRequestSource | None = None,
) -> ToolHandles:
    """Register Foreman tools on ``server`` and return their handles."""

    def _policy_override(agent: str | None, model: str | None) -> DistributionPolicy | None:
        if agent is None:
            return None
        agent_name = validate_agent_name(agent)
        if agent_name not in VALID_AGENTS:
            raise ValidationError(f"Unknown coding agent '{agent_name}'")
        return DistributionPolicy.single(agent_name, validate_model_name(model) if model else None)

    async def _dispatch_work(
        kind: KindName,
        item_id: str | int,
        title: str = "",
        details: str | None = None,
        priority: str | int | None = None,
        url: str | None = None,
        repo: str | None = None,
        branch: str | None = None,
        has_conflicts: bool = False,
        ci_failing: bool = False,
        agent: str | None = None,
        model: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Hand a ticket, issue or PR to a coding agent."""

        work_kind = _resolve_kind(kind)
        item = WorkItem(
            kind=work_kind,
            id=_resolve_item_id(work_kind, item_id),
            title=title,
            details=validate_prompt(details) if details else None,
            priority=priority,
            url=url,
            repo=repo,
            branch=validate_branch_name(branch) if branch else None,
            has_conflicts=has_conflicts,
            ci_failing=ci_failing,
        )
        result = await dispatcher.dispatch(item, _policy_override(agent, model))

        level = "info" if result.ok or (result.error and result.error.informational) else "warning"
        _emit_log(
            context,
            level,
            "Dispatch finished",
            extra={"item": item.display_id, "ok": result.ok, "agent": result.agent},
        )
        return result.to_dict()

    async def _request_review(
        kind: KindName,
        item_id: str | int,
        repo: str | None = None,
        model: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Spawn a reviewer sub-agent for a PR or the PR behind a ticket."""

        work_kind = _resolve_kind(kind)
        item = WorkItem(kind=work_kind, id=_resolve_item_id(work_kind, item_id), repo=repo)
        result = await dispatcher.request_review(item, model=validate_model_name(model) if model else None)
        _emit_log(context, "info", "Review requested", extra={"item": item.display_id, "ok": result.ok})
        return result.to_dict()

    async def _work_in_progress(
        kind: KindName | None = None,
        refresh: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Return the registry snapshot, optionally re-polling the backends first."""

        snapshot = await dispatcher.refresh_registry() if refresh else await dispatcher.ensure_fresh()
        payload = snapshot.to_dict()
        tracker = dispatcher.registry.tracker
        for work_kind in WorkKind:
            persisted = tracker.get_all_work(work_kind)
            if persisted.ok:
                section = payload[work_kind.value]
                for key, record in persisted.work.items():
                    section.setdefault(str(key), record.to_dict())
        if kind is not None:
            payload = {kind: payload[_resolve_kind(kind).value]}
        _emit_log(context, "debug", "Listing work in progress", extra={"refresh": refresh})
        return payload

    def _complete_work(kind: KindName, item_id: str | int, context: Context | None = None) -> dict[str, Any]:
        """Release the claim on an item so it can be dispatched again."""

        work_kind = _resolve_kind(kind)
        resolved = _resolve_item_id(work_kind, item_id)
        ok = dispatcher.complete_work(work_kind, resolved)
        _emit_log(context, "info", "Work completed", extra={"kind": work_kind.value, "item_id": resolved, "ok": ok})
        return {"ok": ok, "kind": work_kind.value, "item_id": resolved}

    def _agent_preferences(context: Context | None = None) -> dict[str, Any]:
        """Return the current distribution policy."""

        return preferences.as_dict()

    def _set_agent_preferences(
        coding_agent: str | None = None,
        agent_mode: Literal["single", "round_robin"] | None = None,
        model_agent: str | None = None,
        model: str | None = None,
        toggle: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Change the coding agent, distribution mode or a per-agent model."""

        try:
            if toggle:
                preferences.toggle_coding_agent()
            if coding_agent is not None:
                preferences.set_coding_agent(validate_agent_name(coding_agent))
            if agent_mode is not None:
                preferences.set_agent_mode(AgentMode(agent_mode))
            if model_agent is not None:
                preferences.set_model(validate_agent_name(model_agent), validate_model_name(model) if model else None)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        _emit_log(context, "info", "Agent preferences updated", extra=preferences.as_dict())
        return preferences.as_dict()

    def _recent_activity(
        limit: int = 20,
        event_type: str | None = None,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """Return recent workflow events, most recent first."""

        bounded = max(1, min(limit, 200))
        return dispatcher.activity.history(event_type=event_type, limit=bounded)

    async def _cli_server_control(
        action: Literal["status", "start", "stop"] = "status",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Start, stop or inspect the gemini CLI server."""

        if cli_server is None:
            raise RuntimeError("CLI server backend is not configured")
        if action == "start":
            await cli_server.start()
        elif action == "stop":
            cli_server.stop()
        _emit_log(context, "info", "CLI server control", extra={"action": action})
        return cli_server.status()

    async def _available_work(kind: KindName | None = None, context: Context | None = None) -> list[dict[str, Any]]:
        """List source items that no agent has claimed yet."""

        await dispatcher.ensure_fresh()
        items = collect_items(ticket_source, pr_source)
        if kind is not None:
            wanted = _resolve_kind(kind)
            items = [item for item in items if item.kind is wanted]
        pending = unclaimed_items(items, dispatcher.registry)
        _emit_log(context, "debug", "Listing available work", extra={"total": len(items), "unclaimed": len(pending)})
        return [item.model_dump(mode="json") for item in pending]

    tool_dispatch = server.tool(
        name="dispatch_work",
        description=(
            "Dispatch a Linear ticket, Chainlink issue or pull request to a coding agent. "
            "Returns the new work record, or an error when the item is already claimed "
            "or the backend failed."
        ),
    )(_dispatch_work)

    tool_review = server.tool(
        name="request_review",
        description="Spawn a reviewer sub-agent for a pull request or the PR behind a ticket.",
    )(_request_review)

    tool_wip = server.tool(
        name="work_in_progress",
        description="List tickets, issues and pull requests currently claimed by an agent.",
    )(_work_in_progress)

    tool_complete = server.tool(
        name="complete_work",
        description="Release the claim on a work item after the agent finished.",
    )(_complete_work)

    tool_prefs = server.tool(
        name="agent_preferences",
        description="Show the coding agent, distribution mode and model overrides.",
    )(_agent_preferences)

    tool_set_prefs = server.tool(
        name="set_agent_preferences",
        description="Update the coding agent, distribution mode or a per-agent model override.",
    )(_set_agent_preferences)

    tool_activity = server.tool(
        name="recent_activity",
        description="Return recent workflow events such as task_started and review_requested.",
    )(_recent_activity)

    tool_cli = server.tool(
        name="cli_server_control",
        description="Start, stop or inspect the gemini CLI server backend.",
    )(_cli_server_control)

    tool_available = server.tool(
        name="available_work",
        description="List tickets, issues and pull requests from the configured sources that no agent has claimed.",
    )(_available_work)

    return ToolHandles(
        dispatch_work=tool_dispatch,
        request_review=tool_review,
        work_in_progress=tool_wip,
        complete_work=tool_complete,
        agent_preferences=tool_prefs,
        set_agent_preferences=tool_set_prefs,
        recent_activity=tool_activity,
        cli_server_control=tool_cli,
        available_work=tool_available,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
