"""Boundary validation for identifiers supplied by callers.

Everything that reaches the orchestration core has passed through one of
these checks first. The values end up in CLI arguments and HTTP payloads,
so the accepted alphabets are deliberately narrow.
"""

from __future__ import annotations

import re
from typing import Any

_LINEAR_TICKET_RE = re.compile(r"^[A-Z][A-Z0-9]*-[0-9]+$")
_BRANCH_RE = re.compile(r"^[a-zA-Z0-9._/-]+$")
_MODEL_RE = re.compile(r"^[a-zA-Z0-9._/-]+$")
_AGENT_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")

MAX_PROMPT_LENGTH = 50_000


class ValidationError(ValueError):
    """Raised when a caller-supplied value fails a format check."""


def _require_string(value: Any, label: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be a string")
    return value


def _check_pattern(value: str, label: str, pattern: re.Pattern[str], max_length: int) -> str:
    if not value:
        raise ValidationError(f"{label} cannot be empty")
    if len(value) > max_length:
        raise ValidationError(f"{label} too long")
    if not pattern.match(value):
        raise ValidationError(f"{label} contains invalid characters")
    return value


def _positive_int(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a positive integer")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
    else:
        raise ValidationError(f"{label} must be a positive integer")
    if number <= 0:
        raise ValidationError(f"{label} must be a positive integer")
    return number


def validate_linear_ticket_id(ticket_id: Any) -> str:
    value = _require_string(ticket_id, "Ticket ID").strip()
    if not value:
        raise ValidationError("Ticket ID cannot be empty")
    if len(value) > 50:
        raise ValidationError("Ticket ID too long")
    if not _LINEAR_TICKET_RE.match(value):
        raise ValidationError("Invalid ticket ID format")
    return value


def validate_chainlink_issue_id(issue_id: Any) -> int:
    return _positive_int(issue_id, "Issue ID")


def validate_pr_number(pr_number: Any) -> int:
    return _positive_int(pr_number, "PR number")


def validate_branch_name(branch: Any) -> str:
    return _check_pattern(_require_string(branch, "Branch name"), "Branch name", _BRANCH_RE, 200)


def validate_model_name(model: Any) -> str:
    return _check_pattern(_require_string(model, "Model name"), "Model name", _MODEL_RE, 100)


def validate_agent_name(agent: Any) -> str:
    return _check_pattern(_require_string(agent, "Agent name"), "Agent name", _AGENT_NAME_RE, 50)


def validate_prompt(prompt: Any) -> str:
    value = _require_string(prompt, "Prompt")
    if not value.strip():
        raise ValidationError("Prompt cannot be empty")
    if len(value) > MAX_PROMPT_LENGTH:
        raise ValidationError("Prompt too long")
    return value


__all__ = [
    "MAX_PROMPT_LENGTH",
    "ValidationError",
    "validate_agent_name",
    "validate_branch_name",
    "validate_chainlink_issue_id",
    "validate_linear_ticket_id",
    "validate_model_name",
    "validate_pr_number",
    "validate_prompt",
]
