"""Dispatch outcomes.

``WorkDispatcher.dispatch`` never raises for backend trouble; it returns a
``DispatchResult`` carrying either the new record or one of these errors.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..work.models import WorkRecord


@dataclass(slots=True)
class DispatchError:
    reason: str

    @property
    def code(self) -> str:
        return "dispatch_error"

    @property
    def informational(self) -> bool:
        return False

    def to_dict(self) -> dict[str, object]:
        return {"code": self.code, "reason": self.reason}


@dataclass(slots=True)
class AlreadyInProgress(DispatchError):
    """Another worker already claims the item."""

    existing: WorkRecord | None = None

    @property
    def code(self) -> str:
        return "already_in_progress"

    @property
    def informational(self) -> bool:
        return True

    def to_dict(self) -> dict[str, object]:
        payload = {"code": self.code, "reason": self.reason}
        if self.existing is not None:
            payload["existing"] = self.existing.to_dict()
        return payload


@dataclass(slots=True)
class BackendUnavailable(DispatchError):
    """The backend could not be reached, is not running or failed to start."""

    @property
    def code(self) -> str:
        return "backend_unavailable"


@dataclass(slots=True)
class SpawnFailed(DispatchError):
    """The backend was reached but returned an error."""

    @property
    def code(self) -> str:
        return "spawn_failed"


@dataclass(slots=True)
class DispatchResult:
    record: WorkRecord | None = None
    error: DispatchError | None = None
    agent: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.record is not None

    @classmethod
    def success(cls, record: WorkRecord, agent: str | None = None) -> "DispatchResult":
        return cls(record=record, agent=agent)

    @classmethod
    def failure(cls, error: DispatchError, agent: str | None = None) -> "DispatchResult":
        return cls(error=error, agent=agent)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"ok": self.ok, "agent": self.agent}
        if self.record is not None:
            payload["record"] = self.record.to_dict()
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        return payload


__all__ = [
    "AlreadyInProgress",
    "BackendUnavailable",
    "DispatchError",
    "DispatchResult",
    "SpawnFailed",
]
