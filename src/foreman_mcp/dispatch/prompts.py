"""Plain-text prompts handed to every backend."""

from __future__ import annotations

from pathlib import Path

from ..work.models import WorkItem, WorkKind

_NO_DETAILS = "No details available - use the ticket ID to look it up."

_REVIEW_CHECKLIST = """\
   - Code quality and best practices
   - Potential bugs or edge cases
   - Performance implications
   - Security concerns
   - Test coverage"""


def build_ticket_prompt(item: WorkItem) -> str:
    lines = [f"Work on Linear ticket {item.id}: {item.title}".rstrip(": ")]
    if item.priority is not None:
        lines.append(f"Priority: {item.priority}")
    lines.extend(
        [
            "",
            "Details:",
            item.details or _NO_DETAILS,
            "",
            "Follow standard development workflow with tests and commits.",
        ]
    )
    return "\n".join(lines)


def build_issue_prompt(item: WorkItem, work_dir: Path | str = ".") -> str:
    issue_id = item.id
    worktree = f"../worktree-ticket-{issue_id}"
    lines = [f"Work on Chainlink issue #{issue_id}: {item.title}", ""]
    if item.priority is not None:
        lines.extend([f"Priority: {item.priority}", ""])
    if item.details:
        lines.extend([item.details, ""])
    lines.extend(
        [
            "Please analyze this issue and implement the required changes.",
            f"Use `chainlink show {issue_id}` to get full details.",
            "",
            "Follow the worktree workflow:",
            f"1. cd {work_dir}",
            "2. git fetch origin",
            f"3. git worktree add {worktree} -b ticket-{issue_id} main",
            f"4. cd {worktree}",
            "5. Do the work",
            "6. Run the test suite",
            "7. Commit with detailed message",
            f"8. Merge back: cd {work_dir} && git merge ticket-{issue_id}",
            f"9. Remove worktree: git worktree remove {worktree}",
            "",
            f"Update chainlink when done: chainlink close {issue_id}",
        ]
    )
    return "\n".join(lines)


def pr_problems(item: WorkItem) -> list[str]:
    problems: list[str] = []
    if item.has_conflicts:
        problems.append("merge conflicts")
    if item.ci_failing:
        problems.append("CI failures")
    return problems


def build_pr_fix_prompt(item: WorkItem, work_dir: Path | str = ".") -> str:
    """Steps for repairing a pull request with conflicts and/or failing CI."""

    problems = " and ".join(pr_problems(item)) or "review feedback"
    number = item.id
    steps = [f"First, check out the branch: `cd {work_dir} && git fetch origin && git checkout {item.branch}`"]
    if item.has_conflicts:
        steps.append(
            "Resolve merge conflicts: `git fetch origin main && git merge origin/main` - fix any conflicts, then commit"
        )
    if item.ci_failing:
        steps.append(f"Get CI failure details: `gh pr checks {number} --repo {item.repo}`")
        steps.append("Review the failing checks and fix the issues (tests, linting, type errors, etc.)")
        steps.append("Run tests locally to verify")
    lines = [
        f"Fix {problems} for PR #{number}",
        "",
        f"This Pull Request has {problems}. Please fix them:",
        f"URL: {item.url}",
        f"Repository: {item.repo}",
        f"Branch: {item.branch}",
        "",
        "Steps:",
    ]
    lines.extend(f"{index}. {step}" for index, step in enumerate(steps, start=1))
    lines.extend(["- Commit and push the fixes", "", "Focus on fixing the issues, not refactoring unrelated code."])
    return "\n".join(lines)


def build_pr_review_prompt(number: int, repo: str | None) -> str:
    repo_flag = f" --repo {repo}" if repo else ""
    return "\n".join(
        [
            f"Super Review Request for PR #{number}",
            "",
            "Please perform a comprehensive code review for this Pull Request:",
            f"Repository: {repo or 'current'}",
            "",
            f"1. Fetch and review the PR using `gh pr view {number}{repo_flag}`",
            f"2. Review the diff using `gh pr diff {number}{repo_flag}`",
            "3. Check all code changes for:",
            _REVIEW_CHECKLIST,
            "4. Leave detailed review comments on the PR",
            "5. Approve or request changes as appropriate using `gh pr review`",
            "",
            "Be thorough but constructive in your feedback.",
        ]
    )


def build_ticket_review_prompt(ticket_id: str) -> str:
    return "\n".join(
        [
            f"Super Review Request for {ticket_id}",
            "",
            f"Please perform a comprehensive code review for the PR related to ticket {ticket_id}:",
            "",
            "1. Check out the PR branch",
            "2. Review all code changes for:",
            _REVIEW_CHECKLIST,
            "3. Verify the implementation matches the ticket requirements",
            "4. Leave detailed review comments on the PR",
            "5. Approve or request changes as appropriate",
            "",
            "Use `gh pr view` to find the PR and `gh pr diff` to see changes.",
        ]
    )


def build_work_prompt(item: WorkItem, work_dir: Path | str = ".") -> str:
    """Pick the prompt for dispatching ``item``."""

    if item.kind is WorkKind.LINEAR_TICKET:
        return build_ticket_prompt(item)
    if item.kind is WorkKind.CHAINLINK_ISSUE:
        return build_issue_prompt(item, work_dir)
    return build_pr_fix_prompt(item, work_dir)


def build_review_prompt(item: WorkItem) -> str:
    if item.kind is WorkKind.PULL_REQUEST:
        return build_pr_review_prompt(int(item.id), item.repo)
    return build_ticket_review_prompt(item.display_id)


__all__ = [
    "build_issue_prompt",
    "build_pr_fix_prompt",
    "build_pr_review_prompt",
    "build_review_prompt",
    "build_ticket_prompt",
    "build_ticket_review_prompt",
    "build_work_prompt",
    "pr_problems",
]
