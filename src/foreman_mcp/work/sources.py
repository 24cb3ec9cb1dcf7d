"""Collaborators that supply dispatchable work items."""

from __future__ import annotations

from typing import Iterable, Protocol

from .models import WorkItem, WorkKind
from .registry import WorkRegistry


class TicketSource(Protocol):
    """Anything that can list Linear tickets and Chainlink issues."""

    def fetch_items(self) -> Iterable[WorkItem]:
        ...


class PullRequestSource(Protocol):
    """Anything that can list open pull requests."""

    def fetch_open_prs(self) -> Iterable[WorkItem]:
        ...


def collect_items(
    ticket_source: TicketSource | None = None,
    pr_source: PullRequestSource | None = None,
) -> list[WorkItem]:
    items: list[WorkItem] = []
    if ticket_source is not None:
        items.extend(item for item in ticket_source.fetch_items() if item.kind is not WorkKind.PULL_REQUEST)
    if pr_source is not None:
        items.extend(item for item in pr_source.fetch_open_prs() if item.kind is WorkKind.PULL_REQUEST)
    return items


def unclaimed_items(items: Iterable[WorkItem], registry: WorkRegistry) -> list[WorkItem]:
    """Return the items neither the registry nor the tracker claims, in source order."""

    return [item for item in items if registry.find(item.kind, item.id) is None]


__all__ = ["PullRequestSource", "TicketSource", "collect_items", "unclaimed_items"]
