"""Foreman MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from datetime import timedelta

from foreman_mcp.agents import PreferenceStore
from foreman_mcp.config import ForemanSettings
from foreman_mcp.storage import ChromaStore, ChromaUnavailableError, WorkTracker
from foreman_mcp.storage.activity import ACTIVITY_STREAM
from foreman_mcp.work import WorkKind


def load_store(settings: ForemanSettings) -> ChromaStore:
    try:
        store = ChromaStore(settings.chroma_persist_path)
        store.ping()
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)
    return store


def load_tracker(settings: ForemanSettings) -> WorkTracker:
    return WorkTracker(settings.work_tracker_path, stale_after=timedelta(hours=settings.stale_work_hours))


def cmd_work(args: argparse.Namespace) -> None:
    settings = ForemanSettings()
    tracker = load_tracker(settings)
    kinds = [WorkKind(args.kind)] if args.kind else list(WorkKind)

    payload: dict[str, dict[str, dict]] = {}
    for kind in kinds:
        result = tracker.get_all_work(kind)
        payload[kind.value] = {str(key): record.to_dict() for key, record in result.work.items()}

    if args.json:
        print(json.dumps(payload, indent=2))
        return
    for kind, entries in payload.items():
        for key, record in entries.items():
            owner = record.get("agent") or record.get("backend")
            print(f"{kind} {key} [{record.get('status')}] -> {owner} {record.get('label') or ''}".rstrip())


def cmd_prune(args: argparse.Namespace) -> None:
    settings = ForemanSettings()
    tracker = load_tracker(settings)
    result = tracker.cleanup_stale()
    if not result.ok:
        print(f"Prune failed: {result.error}")
        raise SystemExit(1)
    print(json.dumps({"removed": [str(key) for key in result.removed]}, indent=2))


def cmd_activity(args: argparse.Namespace) -> None:
    settings = ForemanSettings()
    store = load_store(settings)
    filters: dict = {"stream": ACTIVITY_STREAM}
    if args.type:
        filters = {"$and": [{"stream": ACTIVITY_STREAM}, {"event_type": args.type}]}
    try:
        events = store.search_events(filters=filters)
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)

    events.sort(key=lambda event: event.timestamp)
    if args.limit is not None and args.limit > 0:
        events = events[-args.limit :]

    payload = [
        {
            "event_id": getattr(event, "id", None),
            "type": event.event_type,
            "message": event.metadata.get("message"),
            "timestamp": event.timestamp.isoformat(),
        }
        for event in events
    ]
    print(json.dumps(payload, indent=2))


def cmd_prefs(args: argparse.Namespace) -> None:
    settings = ForemanSettings()
    print(json.dumps(PreferenceStore(settings.preferences_path).as_dict(), indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Foreman MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_work = sub.add_parser("work", help="List persisted work in progress")
    p_work.add_argument("--kind", choices=[kind.value for kind in WorkKind])
    p_work.add_argument("--json", action="store_true", help="Output JSON")
    p_work.set_defaults(func=cmd_work)

    p_prune = sub.add_parser("prune", help="Drop work entries older than the stale window")
    p_prune.set_defaults(func=cmd_prune)

    p_activity = sub.add_parser("activity", help="List persisted activity events")
    p_activity.add_argument("--type")
    p_activity.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N events",
    )
    p_activity.set_defaults(func=cmd_activity)

    p_prefs = sub.add_parser("prefs", help="Show agent distribution preferences")
    p_prefs.set_defaults(func=cmd_prefs)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
