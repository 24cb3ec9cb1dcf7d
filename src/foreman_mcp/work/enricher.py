"""Extract ticket ids and PR numbers from session text.

Enrichment runs once per session snapshot so that the registry builders
can work off the extracted tuples instead of re-scanning text on every
lookup.
"""

from __future__ import annotations

import re
from typing import Iterable

from .models import AgentSession, EnrichedSession

_TICKET_RE = re.compile(r"([A-Z]{2,5}-\d+)", re.IGNORECASE)
_PR_RE = re.compile(
    r"(?:#(\d+)|(?:PR[-#]?)(\d+)|(?:fix|review|update|work-on)[-_]?pr[-_]?(\d+))",
    re.IGNORECASE,
)


def extract_ticket_ids(text: str | None) -> list[str]:
    """Return ticket ids such as ``COR-123`` in source order, upper-cased."""

    if not text:
        return []
    return [match.upper() for match in _TICKET_RE.findall(text)]


def extract_pr_numbers(text: str | None) -> list[int]:
    """Return PR numbers referenced as ``#12``, ``PR-12``/``PR12`` or ``fix-pr-12``."""

    if not text:
        return []
    numbers: list[int] = []
    for groups in _PR_RE.findall(text):
        value = next((group for group in groups if group), None)
        if value:
            numbers.append(int(value))
    return numbers


def _enrich(session: AgentSession, text: str) -> EnrichedSession:
    return EnrichedSession(
        **session.model_dump(exclude={"extracted_tickets", "extracted_prs"}),
        extracted_tickets=tuple(extract_ticket_ids(text)),
        extracted_prs=tuple(extract_pr_numbers(text)),
    )


def enrich_ticket_session(session: AgentSession) -> EnrichedSession:
    """Enrich a coding-session snapshot from its title."""

    return _enrich(session, session.title or "")


def enrich_agent_session(session: AgentSession) -> EnrichedSession:
    """Enrich a sub-agent snapshot from its label and task summary."""

    return _enrich(session, f"{session.label or ''} {session.task_summary or ''}")


def enrich_ticket_sessions(sessions: Iterable[AgentSession]) -> list[EnrichedSession]:
    return [enrich_ticket_session(session) for session in sessions]


def enrich_agent_sessions(sessions: Iterable[AgentSession]) -> list[EnrichedSession]:
    return [enrich_agent_session(session) for session in sessions]


__all__ = [
    "enrich_agent_session",
    "enrich_agent_sessions",
    "enrich_ticket_session",
    "enrich_ticket_sessions",
    "extract_pr_numbers",
    "extract_ticket_ids",
]
