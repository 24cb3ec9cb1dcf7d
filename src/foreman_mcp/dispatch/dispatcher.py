"""Send work items to a coding agent and record who owns them.

A dispatch runs dedup, selection, prompt construction and the backend
call in that order. Only a successful backend call writes anything: the
tracker entry first, then the activity event.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Callable

from ..agents.catalog import DEFAULT_CATALOG, AgentCatalog
from ..agents.models import AgentMode, BackendChoice, DistributionPolicy
from ..agents.preferences import PreferenceStore
from ..agents.selector import select_backend
from ..backends.cli_server import CliServer
from ..backends.runner import BackendError, BackendNotFoundError, BackendRequestError
from ..backends.session_client import SessionClient
from ..backends.subagent import SubagentSpawner
from ..storage.activity import ActivityLog
from ..work.enricher import enrich_agent_sessions, enrich_ticket_sessions
from ..work.models import BackendKind, ItemId, SessionStatus, WorkItem, WorkKind, WorkRecord
from ..work.registry import RegistrySnapshot, WorkRegistry
from .errors import AlreadyInProgress, BackendUnavailable, DispatchResult, SpawnFailed
from .prompts import build_review_prompt, build_work_prompt

logger = logging.getLogger(__name__)

ResultCallback = Callable[[DispatchResult], None]

_AGENT_NAMES = {"claude": "Claude", "opencode": "OpenCode", "gemini": "Gemini"}
_SLUG_RE = re.compile(r"[^a-z0-9]+")


class BackendUnavailableError(BackendError):
    """Internal signal that a backend could not be brought up."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def slugify(value: object) -> str:
    return _SLUG_RE.sub("-", str(value).lower()).strip("-")


def work_label(item: WorkItem) -> str:
    """Label that lets the enricher and issue detection find the item again."""

    if item.kind is WorkKind.LINEAR_TICKET:
        return f"linear-{slugify(item.id)}"
    if item.kind is WorkKind.CHAINLINK_ISSUE:
        return f"chainlink-{item.id}"
    return f"fix-pr-{item.id}"


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def format_spawn_error(agent: str, error: BaseException) -> str:
    """Render a backend failure as ``[type] message | details``."""

    name = _AGENT_NAMES.get(agent, agent)
    details: str | None
    if isinstance(error, BackendNotFoundError):
        error_type, message, details = "connection_error", f"{name} not reachable", str(error)
    elif isinstance(error, BackendRequestError):
        text = str(error)
        if "timed out" in text:
            error_type, message = "timeout", f"Request to {name} timed out"
            details = "Server may be overloaded or unresponsive"
        else:
            error_type, message = "spawn_failed", f"Failed to spawn {name}"
            details = _truncate(error.details or text, 100)
    elif isinstance(error, BackendError):
        error_type, message, details = "spawn_failed", f"Failed to spawn {name}", _truncate(str(error), 100)
    else:
        error_type, message = "unknown_error", f"Unexpected error spawning {name}"
        details = _truncate(repr(error), 150)

    base = f"[{error_type}] {message}"
    return f"{base} | {details}" if details else base


class WorkDispatcher:
    """Coordinate dedup, agent selection and backend spawning."""

    def __init__(
        self,
        registry: WorkRegistry,
        *,
        spawner: SubagentSpawner,
        session_client: SessionClient,
        cli_server: CliServer,
        activity: ActivityLog,
        preferences: PreferenceStore | None = None,
        catalog: AgentCatalog = DEFAULT_CATALOG,
        settle_timeout: float = 2.0,
        poll_interval: float = 0.25,
        work_dir: Path | str = ".",
        refresh_interval: float | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._spawner = spawner
        self._session_client = session_client
        self._cli_server = cli_server
        self._activity = activity
        self._preferences = preferences
        self._catalog = catalog
        self._settle_timeout = settle_timeout
        self._poll_interval = poll_interval
        self._work_dir = work_dir
        self._refresh_interval = refresh_interval
        self._monotonic = monotonic
        self._last_refresh: float | None = None
        self._in_flight: set[tuple[WorkKind, ItemId]] = set()
        self._tasks: set[asyncio.Task[DispatchResult]] = set()

    @property
    def registry(self) -> WorkRegistry:
        return self._registry

    @property
    def activity(self) -> ActivityLog:
        return self._activity

    @property
    def cli_server(self) -> CliServer:
        return self._cli_server

    def _current_policy(self, policy: DistributionPolicy | None) -> DistributionPolicy:
        if policy is not None:
            return policy
        if self._preferences is not None:
            return self._preferences.policy()
        return DistributionPolicy()

    async def dispatch(self, item: WorkItem, policy: DistributionPolicy | None = None) -> DispatchResult:
        key = (item.kind, item.id)
        if key in self._in_flight:
            return DispatchResult.failure(AlreadyInProgress(reason=f"{item.display_id} is already being dispatched"))

        self._in_flight.add(key)
        try:
            await self.ensure_fresh()
            existing = self._registry.find(item.kind, item.id)
            if existing is not None:
                owner = existing.agent or existing.backend.value
                logger.info("Work already in progress", extra={"item": item.display_id, "owner": owner})
                return DispatchResult.failure(
                    AlreadyInProgress(reason=f"{item.display_id} is already being worked on by {owner}", existing=existing)
                )

            resolved = self._current_policy(policy)
            choice = select_backend(resolved, catalog=self._catalog)
            if resolved.mode is AgentMode.ROUND_ROBIN and self._preferences is not None and policy is None:
                self._preferences.record_last_agent(choice.agent)
            return await self._dispatch_to(item, choice)
        finally:
            self._in_flight.discard(key)

    async def _dispatch_to(self, item: WorkItem, choice: BackendChoice) -> DispatchResult:
        prompt = build_work_prompt(item, self._work_dir)
        label = work_label(item)
        logger.info(
            "Dispatching work",
            extra={"item": item.display_id, "agent": choice.agent, "backend": choice.backend.value, "model": choice.model},
        )

        try:
            if choice.backend is BackendKind.SUBAGENT:
                record = await self._spawn_subagent(prompt, label, choice)
            elif choice.backend is BackendKind.INTERACTIVE_SESSION:
                record = await self._spawn_session(prompt, label, choice)
            else:
                record = await self._spawn_cli(prompt, label, choice)
        except BackendUnavailableError as exc:
            logger.warning("Backend unavailable", extra={"agent": choice.agent, "error": exc.reason})
            return DispatchResult.failure(BackendUnavailable(reason=exc.reason), agent=choice.agent)
        except BackendNotFoundError as exc:
            reason = format_spawn_error(choice.agent, exc)
            logger.warning("Backend unavailable", extra={"agent": choice.agent, "error": reason})
            return DispatchResult.failure(BackendUnavailable(reason=reason), agent=choice.agent)
        except Exception as exc:
            reason = format_spawn_error(choice.agent, exc)
            logger.warning("Spawn failed", extra={"agent": choice.agent, "error": reason})
            return DispatchResult.failure(SpawnFailed(reason=reason), agent=choice.agent)

        record.work_id = f"{item.kind.value}:{item.id}"
        stored = self._registry.tracker.start_work(item.kind, item.id, record)
        if not stored.ok:
            logger.error(
                "Work spawned but could not be persisted",
                extra={"item": item.display_id, "error": stored.error},
            )
        self._registry.remember(item.kind, item.id, record)
        self._activity.log_event(
            "task_started",
            f"Work started on {item.display_id}",
            {
                "kind": item.kind.value,
                "item_id": item.id,
                "title": item.title,
                "backend": choice.backend.value,
                "agent": choice.agent,
                "model": choice.model,
            },
        )
        return DispatchResult.success(record, agent=choice.agent)

    def _record(self, choice: BackendChoice, label: str, **fields) -> WorkRecord:
        return WorkRecord(
            backend=choice.backend,
            status=SessionStatus.RUNNING.value,
            label=label,
            agent=choice.agent,
            model=choice.model,
            **fields,
        )

    async def _spawn_subagent(self, prompt: str, label: str, choice: BackendChoice) -> WorkRecord:
        definition = self._catalog.get(choice.agent)
        job = await self._spawner.spawn(
            prompt,
            name=label,
            thinking=definition.thinking if definition else "low",
            post_mode="summary",
            model=choice.model,
        )
        return self._record(choice, job.name, job_id=job.job_id, task_summary=prompt.splitlines()[0])

    async def _spawn_session(self, prompt: str, label: str, choice: BackendChoice) -> WorkRecord:
        handle = await self._session_client.send_task(prompt, model=choice.model)
        return self._record(
            choice,
            handle.slug or label,
            session_id=handle.session_id,
            task_summary=prompt.splitlines()[0],
            metadata={"label": label},
        )

    async def _wait_until_running(self) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settle_timeout
        while True:
            if self._cli_server.running():
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self._poll_interval)

    async def _spawn_cli(self, prompt: str, label: str, choice: BackendChoice) -> WorkRecord:
        # Start, readiness and send failures all mean the server is unavailable.
        try:
            if not self._cli_server.running():
                logger.info("Starting CLI server before dispatch", extra={"agent": choice.agent})
                await self._cli_server.start()
                if not await self._wait_until_running():
                    raise BackendUnavailableError(
                        f"[connection_error] {_AGENT_NAMES.get(choice.agent, choice.agent)} server "
                        f"not ready after {self._settle_timeout}s"
                    )
            await self._cli_server.send_prompt(prompt)
        except BackendUnavailableError:
            raise
        except BackendError as exc:
            raise BackendUnavailableError(format_spawn_error(choice.agent, exc)) from exc
        return self._record(choice, label, task_summary=prompt.splitlines()[0])

    def submit(
        self,
        item: WorkItem,
        policy: DistributionPolicy | None = None,
        on_result: ResultCallback | None = None,
    ) -> asyncio.Task[DispatchResult]:
        """Run :meth:`dispatch` in the background and report through ``on_result``."""

        task = asyncio.ensure_future(self.dispatch(item, policy))
        self._tasks.add(task)

        def _done(finished: asyncio.Task[DispatchResult]) -> None:
            self._tasks.discard(finished)
            if on_result is None or finished.cancelled():
                return
            try:
                on_result(finished.result())
            except Exception:
                logger.exception("Dispatch result callback failed", extra={"item": item.display_id})

        task.add_done_callback(_done)
        return task

    async def request_review(self, item: WorkItem, model: str | None = None) -> DispatchResult:
        """Ask a sub-agent for a review; the item is not claimed."""

        prompt = build_review_prompt(item)
        name = f"review-{slugify(item.id)}"
        choice = BackendChoice(agent="claude", backend=BackendKind.SUBAGENT, model=model)
        try:
            job = await self._spawner.spawn(prompt, name=name, thinking="medium", post_mode="summary", model=model)
        except BackendNotFoundError as exc:
            return DispatchResult.failure(BackendUnavailable(reason=format_spawn_error("claude", exc)), agent="claude")
        except Exception as exc:
            return DispatchResult.failure(SpawnFailed(reason=format_spawn_error("claude", exc)), agent="claude")

        record = self._record(choice, job.name, job_id=job.job_id, task_summary=prompt.splitlines()[0])
        self._activity.log_event(
            "review_requested",
            f"Review requested for {item.display_id}",
            {"kind": item.kind.value, "item_id": item.id, "job_id": job.job_id},
        )
        return DispatchResult.success(record, agent="claude")

    def complete_work(self, kind: WorkKind, item_id: ItemId) -> bool:
        result = self._registry.tracker.complete_work(kind, item_id)
        if not result.ok:
            logger.error("Failed to complete work", extra={"kind": kind.value, "item_id": item_id, "error": result.error})
            return False
        self._registry.forget(kind, item_id)
        if result.removed:
            self._activity.log_event(
                "work_completed",
                f"Work completed on {kind.value} {item_id}",
                {"kind": kind.value, "item_id": item_id},
            )
        return True

    async def refresh_registry(self) -> RegistrySnapshot:
        """Poll the session backends and rebuild the registry.

        A backend whose listing fails is passed on as ``None`` so the
        registry keeps its claims instead of treating them as finished.
        """

        interactive = None
        subagent = None
        try:
            interactive = enrich_ticket_sessions(await self._session_client.list_sessions())
        except BackendError as exc:
            logger.warning("Listing coding sessions failed", extra={"error": str(exc)})
        try:
            subagent = enrich_agent_sessions(await self._spawner.list_sessions())
        except BackendError as exc:
            logger.warning("Listing sub-agent sessions failed", extra={"error": str(exc)})
        snapshot = self._registry.refresh(interactive, subagent)
        self._last_refresh = self._monotonic()
        return snapshot

    async def ensure_fresh(self) -> RegistrySnapshot:
        """Refresh the registry when the snapshot is older than ``refresh_interval``."""

        if self._refresh_interval is None:
            return self._registry.snapshot
        if self._last_refresh is not None and self._monotonic() - self._last_refresh < self._refresh_interval:
            return self._registry.snapshot
        return await self.refresh_registry()


__all__ = ["WorkDispatcher", "format_spawn_error", "slugify", "work_label"]
