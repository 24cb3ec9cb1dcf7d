"""Work items, agent sessions and the registry record."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

MAX_RECENT_ACTIONS = 10


class WorkKind(str, Enum):
    LINEAR_TICKET = "linear_ticket"
    CHAINLINK_ISSUE = "chainlink_issue"
    PULL_REQUEST = "pull_request"


class BackendKind(str, Enum):
    SUBAGENT = "subagent"
    INTERACTIVE_SESSION = "interactive_session"
    CLI_SERVER = "cli_server"


class SessionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    IDLE = "idle"
    COMPLETED = "completed"
    FAILED = "failed"


CLAIMABLE_STATUSES = frozenset({SessionStatus.PENDING, SessionStatus.RUNNING, SessionStatus.IDLE})

_STATUS_ALIASES = {
    "active": SessionStatus.RUNNING,
    "busy": SessionStatus.RUNNING,
    "spawned": SessionStatus.RUNNING,
    "done": SessionStatus.COMPLETED,
    "stopped": SessionStatus.COMPLETED,
    "error": SessionStatus.FAILED,
    "crashed": SessionStatus.FAILED,
    "failure": SessionStatus.FAILED,
}

ItemId = Union[str, int]


def normalize_status(value: Any) -> SessionStatus:
    """Map a backend's status vocabulary onto ``SessionStatus``."""

    if isinstance(value, SessionStatus):
        return value
    text = str(value or "").strip().lower()
    if text in _STATUS_ALIASES:
        return _STATUS_ALIASES[text]
    try:
        return SessionStatus(text)
    except ValueError:
        return SessionStatus.PENDING if not text else SessionStatus.FAILED


class WorkItem(BaseModel):
    """A ticket, issue or pull request that work can be dispatched against."""

    model_config = ConfigDict(frozen=True)

    kind: WorkKind
    id: ItemId = Field(..., description="Ticket identifier, issue number or PR number.")
    title: str = ""
    details: str | None = None
    priority: str | int | None = None
    status: str | None = None
    url: str | None = None
    repo: str | None = None
    branch: str | None = None
    has_conflicts: bool = False
    ci_failing: bool = False

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: ItemId, info: ValidationInfo) -> ItemId:
        kind = info.data.get("kind")
        if kind in (WorkKind.CHAINLINK_ISSUE, WorkKind.PULL_REQUEST):
            return int(value)
        return str(value).strip().upper()

    @property
    def display_id(self) -> str:
        if self.kind is WorkKind.LINEAR_TICKET:
            return str(self.id)
        return f"#{self.id}"


class AgentSession(BaseModel):
    """Read-only snapshot of a session owned by one of the backends."""

    model_config = ConfigDict(frozen=True)

    id: str
    backend: BackendKind
    status: SessionStatus = SessionStatus.PENDING
    label: str | None = None
    title: str | None = None
    slug: str | None = None
    model: str | None = None
    task_summary: str | None = None
    recent_actions: tuple[str, ...] = ()
    tokens_in: int = 0
    tokens_out: int = 0
    cost: float = 0.0

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> SessionStatus:
        return normalize_status(value)

    @field_validator("recent_actions", mode="before")
    @classmethod
    def _bound_actions(cls, value: Any):
        if value is None:
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(str(item) for item in value)[-MAX_RECENT_ACTIONS:]
        raise TypeError("recent_actions must be a sequence of strings")

    @property
    def claimable(self) -> bool:
        return self.status in CLAIMABLE_STATUSES


class EnrichedSession(AgentSession):
    """An ``AgentSession`` with the identifiers found in its text fields."""

    extracted_tickets: tuple[str, ...] = ()
    extracted_prs: tuple[int, ...] = ()


@dataclass(slots=True)
class WorkRecord:
    """Registry entry recording which backend currently claims a work item."""

    backend: BackendKind
    status: str
    session_id: str | None = None
    label: str | None = None
    task_summary: str | None = None
    agent: str | None = None
    model: str | None = None
    job_id: str | None = None
    work_id: str | None = None
    started_at: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["backend"] = self.backend.value
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "WorkRecord":
        backend_raw = payload.get("backend") or payload.get("type") or BackendKind.SUBAGENT.value
        return cls(
            backend=BackendKind(backend_raw),
            status=str(payload.get("status") or SessionStatus.RUNNING.value),
            session_id=payload.get("session_id"),
            label=payload.get("label"),
            task_summary=payload.get("task_summary"),
            agent=payload.get("agent"),
            model=payload.get("model"),
            job_id=payload.get("job_id"),
            work_id=payload.get("work_id"),
            started_at=payload.get("started_at"),
            metadata=dict(payload.get("metadata") or {}),
        )


__all__ = [
    "AgentSession",
    "BackendKind",
    "CLAIMABLE_STATUSES",
    "EnrichedSession",
    "ItemId",
    "MAX_RECENT_ACTIONS",
    "SessionStatus",
    "WorkItem",
    "WorkKind",
    "WorkRecord",
    "normalize_status",
]
