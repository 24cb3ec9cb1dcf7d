from __future__ import annotations

from foreman_mcp.dispatch.prompts import build_review_prompt, build_work_prompt, pr_problems
from foreman_mcp.work import WorkItem, WorkKind


def test_ticket_prompt_without_details() -> None:
    item = WorkItem(kind=WorkKind.LINEAR_TICKET, id="COR-3", title="Tidy imports", priority=2)

    prompt = build_work_prompt(item)

    assert prompt.splitlines()[:2] == ["Work on Linear ticket COR-3: Tidy imports", "Priority: 2"]
    assert "No details available" in prompt


def test_issue_prompt_uses_worktree_workflow() -> None:
    item = WorkItem(kind=WorkKind.CHAINLINK_ISSUE, id=21, title="Retry uploads", details="Uploads fail on 503")

    prompt = build_work_prompt(item, "/srv/repo")

    assert prompt.startswith("Work on Chainlink issue #21: Retry uploads")
    assert "Uploads fail on 503" in prompt
    assert "1. cd /srv/repo" in prompt
    assert "chainlink close 21" in prompt


def test_pr_prompt_lists_only_present_problems() -> None:
    conflicted = WorkItem(kind=WorkKind.PULL_REQUEST, id=5, repo="acme/app", branch="feat", has_conflicts=True)
    both = WorkItem(
        kind=WorkKind.PULL_REQUEST, id=6, repo="acme/app", branch="feat", has_conflicts=True, ci_failing=True
    )

    conflict_prompt = build_work_prompt(conflicted)

    assert pr_problems(both) == ["merge conflicts", "CI failures"]
    assert conflict_prompt.startswith("Fix merge conflicts for PR #5")
    assert "gh pr checks" not in conflict_prompt
    assert "gh pr checks 6 --repo acme/app" in build_work_prompt(both)


def test_review_prompts() -> None:
    pr = WorkItem(kind=WorkKind.PULL_REQUEST, id=8)
    ticket = WorkItem(kind=WorkKind.LINEAR_TICKET, id="COR-4")

    assert "gh pr view 8`" in build_review_prompt(pr)
    assert build_review_prompt(ticket).startswith("Super Review Request for COR-4")
