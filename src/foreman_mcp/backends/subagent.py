"""Isolated sub-agents spawned through the openclaw CLI."""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any

from ..work.models import AgentSession, BackendKind
from .runner import BackendRequestError, CliRunner

logger = logging.getLogger(__name__)

JOB_PREFIX = "dashboard-"


@dataclass(slots=True)
class SpawnedJob:
    name: str
    job_id: str | None = None
    raw: Any = None


def _session_from_payload(payload: dict[str, Any]) -> AgentSession | None:
    session_id = payload.get("id") or payload.get("key") or payload.get("sessionId")
    if not session_id:
        return None
    return AgentSession(
        id=str(session_id),
        backend=BackendKind.SUBAGENT,
        status=payload.get("status"),
        label=payload.get("label") or payload.get("name"),
        model=payload.get("model"),
        task_summary=payload.get("task_summary") or payload.get("taskSummary"),
        recent_actions=payload.get("recent_actions") or payload.get("recentActions") or (),
        tokens_in=int(payload.get("tokens_in") or payload.get("inputTokens") or 0),
        tokens_out=int(payload.get("tokens_out") or payload.get("outputTokens") or 0),
        cost=float(payload.get("cost") or 0.0),
    )


class SubagentSpawner:
    """Schedule one-shot isolated sub-agent runs."""

    def __init__(self, runner: CliRunner) -> None:
        self._runner = runner

    @property
    def runner(self) -> CliRunner:
        return self._runner

    async def spawn(
        self,
        prompt: str,
        *,
        name: str | None = None,
        thinking: str = "low",
        post_mode: str = "summary",
        model: str | None = None,
    ) -> SpawnedJob:
        """Create a delete-after-run cron job that wakes the sub-agent now.

        Raises ``BackendNotFoundError`` when openclaw is missing and
        ``BackendRequestError`` when the command fails.
        """

        job_name = f"{JOB_PREFIX}{name or f'task-{secrets.randbelow(999_999) + 1}'}"
        args = [
            "cron",
            "add",
            "--name",
            job_name,
            "--session",
            "isolated",
            "--at",
            "1m",
            "--delete-after-run",
            "--wake",
            "now",
            "--message",
            prompt,
            "--thinking",
            thinking,
            "--post-mode",
            post_mode,
            "--json",
        ]
        if model:
            args.extend(["--model", model])

        logger.info("Spawning isolated sub-agent", extra={"job_name": job_name, "model": model})
        result = await self._runner.run(*args)
        if not result.ok:
            raise BackendRequestError(
                f"openclaw cron add failed (exit {result.returncode})",
                details=result.output or None,
            )

        try:
            document = json.loads(result.stdout)
        except json.JSONDecodeError:
            logger.warning("Sub-agent spawned but response was not JSON", extra={"job_name": job_name})
            return SpawnedJob(name=job_name, raw=result.stdout)

        job_id = document.get("id") if isinstance(document, dict) else None
        return SpawnedJob(name=job_name, job_id=str(job_id) if job_id else None, raw=document)

    async def list_sessions(self) -> list[AgentSession]:
        result = await self._runner.run("sessions", "--json")
        if not result.ok:
            raise BackendRequestError("openclaw sessions failed", details=result.output or None)
        try:
            document = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as exc:
            raise BackendRequestError("openclaw sessions returned invalid JSON") from exc

        entries = document.get("sessions", []) if isinstance(document, dict) else document
        sessions: list[AgentSession] = []
        for entry in entries or []:
            if isinstance(entry, dict):
                session = _session_from_payload(entry)
                if session is not None:
                    sessions.append(session)
        return sessions


__all__ = ["JOB_PREFIX", "SpawnedJob", "SubagentSpawner"]
