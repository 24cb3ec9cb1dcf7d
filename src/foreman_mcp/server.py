"""FastMCP server bootstrap for Foreman."""

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .agents import DEFAULT_CATALOG, AgentCatalog, CatalogLoadError, PreferenceStore, load_catalog
from .backends import CliRunner, CliServer, SessionClient, SubagentSpawner
from .config import ForemanSettings, get_settings
from .dispatch import WorkDispatcher
from .storage import ActivityLog, ChromaStore, ChromaUnavailableError, WorkTracker
from .tools import register_tools
from .work import PullRequestSource, TicketSource, WorkKind, WorkRegistry


def configure_logging(level: str) -> None:
    """Configure root logging for the Foreman server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _load_catalog(settings: ForemanSettings) -> tuple[AgentCatalog, str | None]:
    try:
        return load_catalog(settings.agent_catalog_paths), None
    except CatalogLoadError as exc:
        logging.getLogger(__name__).warning("Agent catalog overrides ignored", extra={"error": str(exc)})
        return DEFAULT_CATALOG, str(exc)


def create_server(
    settings: Optional[ForemanSettings] = None,
    dispatcher: WorkDispatcher | None = None,
    ticket_source: TicketSource | None = None,
    pr_source: PullRequestSource | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with its tools and status resource."""

    settings = settings or get_settings()
    catalog, catalog_error = _load_catalog(settings)

    chroma_store: ChromaStore | None = None
    chroma_metadata = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": "foreman_activity",
        "error": None,
    }
    try:
        chroma_store = ChromaStore(settings.chroma_persist_path)
        chroma_store.ping()
        chroma_metadata["available"] = True
    except ChromaUnavailableError as exc:
        chroma_metadata["error"] = str(exc)
        chroma_store = None

    preferences = PreferenceStore(settings.preferences_path)
    if dispatcher is None:
        cli_server = CliServer(
            CliRunner(
                "gemini",
                Path(settings.gemini_path) if settings.gemini_path else None,
                env={"NO_COLOR": "1", "TERM": "dumb"},
            ),
            cwd=settings.gemini_cwd or settings.work_dir,
        )
        tracker = WorkTracker(settings.work_tracker_path, stale_after=timedelta(hours=settings.stale_work_hours))
        tracker.cleanup_stale()
        dispatcher = WorkDispatcher(
            WorkRegistry(tracker, cleanup_interval=settings.cleanup_interval),
            spawner=SubagentSpawner(
                CliRunner(
                    "openclaw",
                    Path(settings.openclaw_path) if settings.openclaw_path else None,
                    timeout=settings.subagent_timeout,
                )
            ),
            session_client=SessionClient(settings.opencode_url, timeout=settings.opencode_timeout),
            cli_server=cli_server,
            activity=ActivityLog(chroma_store),
            preferences=preferences,
            catalog=catalog,
            settle_timeout=settings.cli_settle_timeout,
            poll_interval=settings.cli_poll_interval,
            work_dir=settings.work_dir,
            refresh_interval=settings.refresh_interval,
        )

    server = FastMCP(
        name="Foreman MCP",
        version=__version__,
        instructions=(
            "Foreman delegates Linear tickets, Chainlink issues and GitHub pull requests "
            "to coding agents (openclaw sub-agents, OpenCode sessions, the gemini CLI) "
            "and tracks which item each agent is working on."
        ),
    )

    cli_server = dispatcher.cli_server
    handles = register_tools(
        server,
        dispatcher=dispatcher,
        preferences=preferences,
        cli_server=cli_server,
        ticket_source=ticket_source,
        pr_source=pr_source,
    )

    @server.resource(
        "resource://foreman/status",
        name="foreman_status",
        title="Foreman MCP Status",
        description="Provides the current runtime status for the Foreman MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        tracker = dispatcher.registry.tracker
        work_counts: dict[str, int] = {}
        storage_error: str | None = None
        for kind in WorkKind:
            result = tracker.get_all_work(kind)
            if not result.ok:
                storage_error = result.error
            work_counts[kind.value] = len(result.work)

        recent = [event.to_dict() for event in dispatcher.activity.get_events(5)]

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "agents": {
                "names": catalog.names(),
                "error": catalog_error,
            },
            "preferences": preferences.as_dict(),
            "backends": {
                "openclaw_path": settings.openclaw_path,
                "opencode_url": settings.opencode_url,
                "gemini": cli_server.status(),
            },
            "storage": {
                "work_tracker": str(tracker.path),
                "chroma": chroma_metadata,
                "error": storage_error,
            },
            "work": work_counts,
            "activity": recent,
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload, default=str)

    setattr(server, "dispatcher", dispatcher)
    setattr(server, "preferences", preferences)
    setattr(server, "cli_server", cli_server)
    setattr(server, "chroma_store", chroma_store)
    setattr(server, "chroma_metadata", chroma_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Foreman MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Foreman MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "chroma_available": getattr(server, "chroma_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
