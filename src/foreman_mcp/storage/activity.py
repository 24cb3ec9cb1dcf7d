"""Append-only log of high-level workflow events."""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from .chroma import ChromaStore

logger = logging.getLogger(__name__)

MAX_EVENTS = 50
ACTIVITY_STREAM = "activity"

EVENT_TYPES = frozenset(
    {
        "code_complete",
        "merge_started",
        "merge_complete",
        "restart_triggered",
        "restart_complete",
        "test_passed",
        "test_failed",
        "task_started",
        "review_requested",
        "work_completed",
    }
)


@dataclass(slots=True)
class ActivityEvent:
    id: str
    type: str
    message: str
    details: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


Listener = Callable[[ActivityEvent], None]


class ActivityLog:
    """Keep the most recent events in memory and mirror them into Chroma."""

    def __init__(
        self,
        store: ChromaStore | None = None,
        *,
        max_events: int = MAX_EVENTS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._events: deque[ActivityEvent] = deque(maxlen=max_events)
        self._listeners: list[Listener] = []
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def persistent(self) -> bool:
        return self._store is not None

    def log_event(self, event_type: str, message: str, details: dict[str, Any] | None = None) -> ActivityEvent:
        """Record an event; unknown event types raise ``ValueError``."""

        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown activity event type '{event_type}'")

        event = ActivityEvent(
            id=uuid.uuid4().hex[:16],
            type=event_type,
            message=message,
            details=dict(details or {}),
            timestamp=self._clock(),
        )
        self._events.append(event)

        if self._store is not None:
            try:
                self._store.record_event(
                    stream=ACTIVITY_STREAM,
                    event_type=event_type,
                    body=event.to_dict(),
                    metadata={"message": message, **event.details},
                )
            except Exception as exc:  # storage must never break dispatch
                logger.warning(
                    "Failed to persist activity event",
                    extra={"event_type": event_type, "error": str(exc)},
                )

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # pragma: no cover - listener bugs are not ours
                logger.exception("Activity listener failed")

        return event

    def get_events(self, limit: int = 20) -> list[ActivityEvent]:
        """Return recent events, most recent first."""

        if limit <= 0:
            return []
        return list(reversed(self._events))[:limit]

    def history(self, *, event_type: str | None = None, limit: int | None = None) -> list[dict[str, Any]]:
        """Return persisted history when Chroma is configured, else the in-memory ring."""

        if self._store is None:
            events = [event.to_dict() for event in reversed(self._events)]
            if event_type:
                events = [event for event in events if event["type"] == event_type]
            return events[:limit] if limit else events

        filters: dict[str, Any] = {"stream": ACTIVITY_STREAM}
        if event_type:
            filters = {"$and": [{"stream": ACTIVITY_STREAM}, {"event_type": event_type}]}
        stored = self._store.search_events(filters=filters, limit=limit)
        return [
            {
                "id": event.id,
                "type": event.event_type,
                "message": event.metadata.get("message"),
                "timestamp": event.timestamp.isoformat(),
                "document": event.document,
            }
            for event in reversed(stored)
        ]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; the returned callable unsubscribes it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def clear(self) -> None:
        self._events.clear()


__all__ = ["ACTIVITY_STREAM", "ActivityEvent", "ActivityLog", "EVENT_TYPES", "MAX_EVENTS"]
