"""JSON-backed persistence for work in progress.

Entries are grouped by work kind and keyed by the item identifier, so a
Chainlink issue and a pull request that share a number never collide.
Each mutation is a single upsert/delete performed under a lock and written
to disk through a temporary file followed by an atomic rename.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

from ..work.models import ItemId, WorkKind, WorkRecord

logger = logging.getLogger(__name__)

DEFAULT_STALE_HOURS = 24


@dataclass(slots=True)
class TrackerResult:
    """Outcome of a tracker operation."""

    ok: bool
    error: str | None = None
    work: dict[ItemId, WorkRecord] = field(default_factory=dict)
    removed: list[ItemId] = field(default_factory=list)

    @classmethod
    def failure(cls, error: str) -> "TrackerResult":
        return cls(ok=False, error=error)


def _coerce_key(kind: WorkKind, raw: Any) -> ItemId:
    if kind is WorkKind.LINEAR_TICKET:
        return str(raw)
    return int(raw)


class WorkTracker:
    """Persist which backend/session claims each work item."""

    def __init__(
        self,
        path: Path,
        *,
        stale_after: timedelta = timedelta(hours=DEFAULT_STALE_HOURS),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._stale_after = stale_after
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._work: dict[WorkKind, dict[ItemId, WorkRecord]] = {kind: {} for kind in WorkKind}
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("Work tracker file does not exist yet", extra={"path": str(self._path)})
            return
        except OSError as exc:
            logger.warning("Failed to read work tracker file", extra={"path": str(self._path), "error": str(exc)})
            return

        try:
            document = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            logger.warning("Failed to parse work tracker file", extra={"path": str(self._path), "error": str(exc)})
            return

        for kind in WorkKind:
            section = document.get(kind.value) or {}
            for raw_key, payload in section.items():
                try:
                    key = _coerce_key(kind, raw_key)
                    self._work[kind][key] = WorkRecord.from_dict(payload)
                except (TypeError, ValueError) as exc:
                    logger.warning(
                        "Skipping malformed work tracker entry",
                        extra={"kind": kind.value, "key": raw_key, "error": str(exc)},
                    )

    def _save(self) -> str | None:
        document = {
            kind.value: {str(key): record.to_dict() for key, record in entries.items()}
            for kind, entries in self._work.items()
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=self._path.name, suffix=".tmp", dir=self._path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2, sort_keys=True)
            os.replace(temp_name, self._path)
        except OSError as exc:
            logger.error("Failed to save work tracker", extra={"path": str(self._path), "error": str(exc)})
            return str(exc)
        return None

    def _commit_removals(self, dropped: list[tuple[WorkKind, ItemId, WorkRecord]], message: str) -> TrackerResult:
        if not dropped:
            return TrackerResult(ok=True)
        error = self._save()
        if error:
            # Disk still holds the entries; keep memory in step with it.
            for kind, key, record in dropped:
                self._work[kind][key] = record
            return TrackerResult.failure(error)
        logger.info(message, extra={"removed": len(dropped)})
        return TrackerResult(ok=True, removed=[key for _, key, _ in dropped])

    def _snapshot(self, kind: WorkKind) -> dict[ItemId, WorkRecord]:
        return dict(self._work[kind])

    def start_work(self, kind: WorkKind, item_id: ItemId, record: WorkRecord) -> TrackerResult:
        """Upsert the record claiming ``item_id``."""

        with self._lock:
            key = _coerce_key(kind, item_id)
            if record.started_at is None:
                record.started_at = self._clock().isoformat()
            previous = self._work[kind].get(key)
            self._work[kind][key] = record
            error = self._save()
            if error:
                if previous is None:
                    del self._work[kind][key]
                else:
                    self._work[kind][key] = previous
                return TrackerResult.failure(error)
            return TrackerResult(ok=True, work={key: record})

    def complete_work(self, kind: WorkKind, item_id: ItemId) -> TrackerResult:
        """Remove the claim on ``item_id``."""

        with self._lock:
            key = _coerce_key(kind, item_id)
            removed = self._work[kind].pop(key, None)
            if removed is None:
                return TrackerResult(ok=True)
            error = self._save()
            if error:
                self._work[kind][key] = removed
                return TrackerResult.failure(error)
            return TrackerResult(ok=True, removed=[key])

    def get_all_work(self, kind: WorkKind) -> TrackerResult:
        with self._lock:
            return TrackerResult(ok=True, work=self._snapshot(kind))

    def get_work(self, kind: WorkKind, item_id: ItemId) -> WorkRecord | None:
        with self._lock:
            return self._work[kind].get(_coerce_key(kind, item_id))

    def has_work(self, kind: WorkKind, item_id: ItemId) -> bool:
        return self.get_work(kind, item_id) is not None

    def sync_with_sessions(self, active_session_ids: Iterable[str]) -> TrackerResult:
        """Drop entries whose session is no longer active.

        Entries without a session id were registered before any backend
        reported a session and are left for ``cleanup_stale``.
        """

        active = set(active_session_ids)
        with self._lock:
            dropped: list[tuple[WorkKind, ItemId, WorkRecord]] = []
            for kind, entries in self._work.items():
                for key, record in list(entries.items()):
                    if record.session_id is None or record.session_id in active:
                        continue
                    dropped.append((kind, key, entries.pop(key)))
            return self._commit_removals(dropped, "Work tracker pruned stale entries")

    def cleanup_stale(self) -> TrackerResult:
        """Drop entries started longer ago than the stale window."""

        cutoff = self._clock() - self._stale_after
        with self._lock:
            dropped: list[tuple[WorkKind, ItemId, WorkRecord]] = []
            for kind, entries in self._work.items():
                for key, record in list(entries.items()):
                    if record.started_at is None:
                        continue
                    try:
                        started = datetime.fromisoformat(record.started_at)
                    except ValueError:
                        continue
                    if started.tzinfo is None:
                        started = started.replace(tzinfo=timezone.utc)
                    if started <= cutoff:
                        dropped.append((kind, key, entries.pop(key)))
            return self._commit_removals(dropped, "Work tracker expired old entries")


__all__ = ["DEFAULT_STALE_HOURS", "TrackerResult", "WorkTracker"]
