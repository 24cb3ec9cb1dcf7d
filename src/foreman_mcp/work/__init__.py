"""Work items, identifier enrichment and the in-progress registry."""

from .enricher import (
    enrich_agent_session,
    enrich_agent_sessions,
    enrich_ticket_session,
    enrich_ticket_sessions,
    extract_pr_numbers,
    extract_ticket_ids,
)
from .models import AgentSession, BackendKind, EnrichedSession, SessionStatus, WorkItem, WorkKind, WorkRecord
from .registry import (
    RegistrySnapshot,
    WorkRegistry,
    build_issues_in_progress,
    build_prs_in_progress,
    build_tickets_in_progress,
)
from .sources import PullRequestSource, TicketSource, collect_items, unclaimed_items

__all__ = [
    "AgentSession",
    "BackendKind",
    "EnrichedSession",
    "PullRequestSource",
    "RegistrySnapshot",
    "SessionStatus",
    "TicketSource",
    "WorkItem",
    "WorkKind",
    "WorkRecord",
    "WorkRegistry",
    "build_issues_in_progress",
    "build_prs_in_progress",
    "build_tickets_in_progress",
    "collect_items",
    "enrich_agent_session",
    "enrich_agent_sessions",
    "enrich_ticket_session",
    "enrich_ticket_sessions",
    "extract_pr_numbers",
    "extract_ticket_ids",
    "unclaimed_items",
]
