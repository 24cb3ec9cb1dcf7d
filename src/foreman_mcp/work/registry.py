"""Build the "what is being worked on" maps from enriched sessions.

Each builder is a pure function over already-fetched data. ``WorkRegistry``
wraps them with the persisted tracker, keeps the latest snapshot for the
dispatcher's dedup check and schedules the best-effort reconciliation.
"""

from __future__ import annotations

import logging
import re
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Sequence

from .models import BackendKind, EnrichedSession, ItemId, WorkKind, WorkRecord

logger = logging.getLogger(__name__)

_ISSUE_LABEL_RE = re.compile(r"(?:ticket|chainlink)-(\d+)")

DEFAULT_CLEANUP_INTERVAL = 300.0


def _claimable(sessions: Iterable[EnrichedSession]) -> list[EnrichedSession]:
    return [session for session in sessions if session.claimable]


def _record_for(session: EnrichedSession) -> WorkRecord:
    if session.backend is BackendKind.INTERACTIVE_SESSION:
        return WorkRecord(
            backend=session.backend,
            status=session.status.value,
            session_id=session.id,
            label=session.slug or session.label,
            task_summary=session.title,
            model=session.model,
        )
    return WorkRecord(
        backend=session.backend,
        status=session.status.value,
        session_id=session.id,
        label=session.label,
        task_summary=session.task_summary,
        model=session.model,
    )


def _combine(
    interactive: Sequence[EnrichedSession],
    subagent: Sequence[EnrichedSession],
    extract,
) -> dict:
    combined: dict = {}
    # Interactive sessions are applied last so they override sub-agents.
    for session in _claimable(subagent) + _claimable(interactive):
        for item_id in extract(session):
            combined[item_id] = _record_for(session)
    return combined


def build_tickets_in_progress(
    interactive: Sequence[EnrichedSession],
    subagent: Sequence[EnrichedSession],
) -> dict[str, WorkRecord]:
    """Map Linear ticket ids to the session working on them."""

    return _combine(interactive, subagent, lambda session: session.extracted_tickets)


def build_prs_in_progress(
    interactive: Sequence[EnrichedSession],
    subagent: Sequence[EnrichedSession],
) -> dict[int, WorkRecord]:
    """Map pull request numbers to the session working on them."""

    return _combine(interactive, subagent, lambda session: session.extracted_prs)


def detect_issue_id(label: str | None) -> int | None:
    """Return the issue number carried by labels such as ``fix-ticket-12``."""

    if not label:
        return None
    match = _ISSUE_LABEL_RE.search(label)
    return int(match.group(1)) if match else None


def build_issues_in_progress(
    subagent: Sequence[EnrichedSession],
    current_work: Mapping[int, WorkRecord],
    persisted: Mapping[int, WorkRecord] | None = None,
) -> dict[int, WorkRecord]:
    """Merge persisted, caller-known and freshly detected issue claims.

    Later layers win: a detected session supersedes a stale persisted
    record, while a record registered by a dispatch survives until the
    backend starts reporting the session.
    """

    detected: dict[int, WorkRecord] = {}
    for session in _claimable(subagent):
        issue_id = detect_issue_id(session.label)
        if issue_id is not None:
            detected[issue_id] = _record_for(session)

    merged: dict[int, WorkRecord] = dict(persisted or {})
    merged.update(current_work)
    merged.update(detected)
    return merged


def active_session_ids(*session_lists: Iterable[EnrichedSession]) -> list[str]:
    return [session.id for sessions in session_lists for session in _claimable(sessions)]


@dataclass(slots=True)
class RegistrySnapshot:
    """The three lookup maps produced by one refresh."""

    tickets: dict[str, WorkRecord] = field(default_factory=dict)
    prs: dict[int, WorkRecord] = field(default_factory=dict)
    issues: dict[int, WorkRecord] = field(default_factory=dict)

    def for_kind(self, kind: WorkKind) -> dict:
        if kind is WorkKind.LINEAR_TICKET:
            return self.tickets
        if kind is WorkKind.PULL_REQUEST:
            return self.prs
        return self.issues

    def to_dict(self) -> dict[str, dict[str, dict]]:
        return {
            WorkKind.LINEAR_TICKET.value: {str(k): v.to_dict() for k, v in self.tickets.items()},
            WorkKind.PULL_REQUEST.value: {str(k): v.to_dict() for k, v in self.prs.items()},
            WorkKind.CHAINLINK_ISSUE.value: {str(k): v.to_dict() for k, v in self.issues.items()},
        }


class WorkRegistry:
    """Hold the latest registry snapshot and reconcile the persisted tracker.

    A refresh receives ``None`` for a backend whose session listing failed.
    That backend's previous claims are kept and the tracker is not
    reconciled, since the active session set is incomplete.
    """

    def __init__(
        self,
        tracker,
        *,
        executor: ThreadPoolExecutor | None = None,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tracker = tracker
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="foreman-sync")
        self._cleanup_interval = cleanup_interval
        self._monotonic = monotonic
        self._last_cleanup: float | None = None
        self._snapshot = RegistrySnapshot()
        self.last_reconciliation: Future | None = None
        self.last_cleanup: Future | None = None

    @property
    def tracker(self):
        return self._tracker

    @property
    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    def _persisted(self, kind: WorkKind) -> dict:
        try:
            result = self._tracker.get_all_work(kind)
        except Exception as exc:
            logger.debug("Failed to load persisted work", extra={"kind": kind.value, "error": str(exc)})
            return {}
        return dict(result.work) if result.ok else {}

    def _reconcile(self, active_ids: list[str]) -> None:
        try:
            result = self._tracker.sync_with_sessions(active_ids)
        except Exception as exc:
            logger.debug("Work tracker reconciliation failed", extra={"error": str(exc)})
            return
        if not result.ok:
            logger.debug("Work tracker reconciliation failed", extra={"error": result.error})

    def _cleanup(self) -> None:
        try:
            result = self._tracker.cleanup_stale()
        except Exception as exc:
            logger.debug("Work tracker cleanup failed", extra={"error": str(exc)})
            return
        if not result.ok:
            logger.debug("Work tracker cleanup failed", extra={"error": result.error})

    def _submit(self, fn, *args) -> Future | None:
        try:
            return self._executor.submit(fn, *args)
        except RuntimeError:
            # Executor already shut down.
            return None

    def schedule_reconciliation(self, active_ids: list[str]) -> Future | None:
        future = self._submit(self._reconcile, active_ids)
        if future is not None:
            self.last_reconciliation = future
        return future

    def schedule_cleanup(self) -> Future | None:
        """Expire old tracker entries, at most once per cleanup interval."""

        now = self._monotonic()
        if self._last_cleanup is not None and now - self._last_cleanup < self._cleanup_interval:
            return None
        future = self._submit(self._cleanup)
        if future is not None:
            self._last_cleanup = now
            self.last_cleanup = future
        return future

    def refresh(
        self,
        interactive: Sequence[EnrichedSession] | None,
        subagent: Sequence[EnrichedSession] | None,
    ) -> RegistrySnapshot:
        """Rebuild every map from the given sessions and the persisted store."""

        failed = set()
        if interactive is None:
            failed.add(BackendKind.INTERACTIVE_SESSION)
            interactive = []
        if subagent is None:
            failed.add(BackendKind.SUBAGENT)
            subagent = []

        active_ids = active_session_ids(interactive, subagent)
        if failed:
            logger.debug(
                "Skipping work tracker reconciliation",
                extra={"failed": sorted(backend.value for backend in failed)},
            )
        else:
            self.schedule_reconciliation(active_ids)
        self.schedule_cleanup()

        active = set(active_ids)
        previous = self._snapshot
        # Sessionless claims come back through the persisted layer until cleanup expires them.
        known_issues = {
            issue_id: record
            for issue_id, record in previous.issues.items()
            if record.session_id in active or (record.session_id is not None and record.backend in failed)
        }
        snapshot = RegistrySnapshot(
            tickets=build_tickets_in_progress(interactive, subagent),
            prs=build_prs_in_progress(interactive, subagent),
            issues=build_issues_in_progress(
                subagent,
                known_issues,
                persisted=self._persisted(WorkKind.CHAINLINK_ISSUE),
            ),
        )
        if failed:
            for kind in (WorkKind.LINEAR_TICKET, WorkKind.PULL_REQUEST):
                rebuilt = snapshot.for_kind(kind)
                for item_id, record in previous.for_kind(kind).items():
                    if record.backend in failed:
                        rebuilt.setdefault(item_id, record)
        self._snapshot = snapshot
        logger.debug(
            "Registry refreshed",
            extra={"tickets": len(snapshot.tickets), "prs": len(snapshot.prs), "issues": len(snapshot.issues)},
        )
        return snapshot

    def remember(self, kind: WorkKind, item_id: ItemId, record: WorkRecord) -> None:
        """Add a freshly dispatched record to the current snapshot."""

        self._snapshot.for_kind(kind)[item_id] = record

    def forget(self, kind: WorkKind, item_id: ItemId) -> None:
        self._snapshot.for_kind(kind).pop(item_id, None)

    def find(self, kind: WorkKind, item_id: ItemId) -> WorkRecord | None:
        """Return the record claiming an item, checking the snapshot then the tracker."""

        existing = self._snapshot.for_kind(kind).get(item_id)
        if existing is not None:
            return existing
        try:
            return self._tracker.get_work(kind, item_id)
        except Exception as exc:
            logger.debug("Failed to query persisted work", extra={"kind": kind.value, "error": str(exc)})
            return None

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


__all__ = [
    "DEFAULT_CLEANUP_INTERVAL",
    "RegistrySnapshot",
    "WorkRegistry",
    "active_session_ids",
    "build_issues_in_progress",
    "build_prs_in_progress",
    "build_tickets_in_progress",
    "detect_issue_id",
]
