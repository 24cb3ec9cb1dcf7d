from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from foreman_mcp.storage import ChromaStore, ChromaUnavailableError


def _ticking_clock(start: str = "2025-01-01T00:00:00+00:00"):
    current = [datetime.fromisoformat(start)]

    def _clock() -> datetime:
        value = current[0]
        current[0] = value + timedelta(seconds=1)
        return value

    return _clock


def test_record_and_search_events(tmp_path: Path, stub_client) -> None:
    store = ChromaStore(tmp_path, client_factory=lambda: stub_client, clock=_ticking_clock())

    event = store.record_event(
        stream="activity",
        event_type="task_started",
        body={"message": "started"},
        metadata={"message": "started", "item_id": 12, "tags": ["cli"], "skip": None},
    )

    assert event.stream == "activity"
    assert event.metadata["sequence"] == 1
    assert event.metadata["tags"] == '["cli"]'
    assert "skip" not in event.metadata

    [stored] = store.search_events(filters={"stream": "activity"})
    assert stored.id == event.id
    assert stored.document == '{"message": "started"}'
    assert stored.timestamp == event.timestamp
    assert stub_client.collections["foreman_activity"].records


def test_sequence_increments_per_stream(tmp_path: Path, stub_client) -> None:
    store = ChromaStore(tmp_path, client_factory=lambda: stub_client, clock=_ticking_clock())

    store.record_event(stream="activity", event_type="task_started", body="A")
    store.record_event(stream="activity", event_type="task_started", body="B")
    other = store.record_event(stream="audit", event_type="note", body="C")

    sequences = [event.metadata["sequence"] for event in store.search_events(filters={"stream": "activity"})]
    assert sequences == [1, 2]
    assert other.metadata["sequence"] == 1


def test_search_keeps_latest(tmp_path: Path, stub_client) -> None:
    store = ChromaStore(tmp_path, client_factory=lambda: stub_client, clock=_ticking_clock())

    store.record_event(stream="activity", event_type="note", body="Investigate auth")
    store.record_event(stream="activity", event_type="note", body="Fix logging")
    store.record_event(stream="activity", event_type="note", body="auth follow-up")

    latest = store.search_events(limit=2)
    assert [event.document for event in latest] == ["Fix logging", "auth follow-up"]


def test_client_factory_failure_surfaces(tmp_path: Path) -> None:
    def _broken():
        raise ChromaUnavailableError("no chroma here")

    store = ChromaStore(tmp_path, client_factory=_broken)

    with pytest.raises(ChromaUnavailableError):
        store.ping()
