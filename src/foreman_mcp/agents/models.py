"""Agent definitions and the distribution policy."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..work.models import BackendKind


class AgentMode(str, Enum):
    SINGLE = "single"
    ROUND_ROBIN = "round_robin"


class AgentDefinition(BaseModel):
    """How Foreman reaches one coding agent."""

    name: str = Field(..., description="Agent name used in preferences, e.g. 'claude'.")
    backend: BackendKind = Field(..., description="Backend that executes work for this agent.")
    default_model: str | None = Field(default=None, description="Model used when no override is set.")
    models: list[str] = Field(default_factory=list, description="Models the agent is known to accept.")
    thinking: str = Field(default="low", description="Thinking level requested from sub-agents.")
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("Agent name must not be empty")
        return normalized

    @field_validator("models", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("models must be a sequence of strings")


@dataclass(slots=True)
class DistributionPolicy:
    """Which agent receives the next dispatch."""

    mode: AgentMode = AgentMode.ROUND_ROBIN
    coding_agent: str = "opencode"
    last_agent: str | None = "claude"
    models: dict[str, str] = field(default_factory=dict)

    @classmethod
    def single(cls, agent: str, model: str | None = None) -> "DistributionPolicy":
        return cls(mode=AgentMode.SINGLE, coding_agent=agent, models={agent: model} if model else {})

    @classmethod
    def round_robin(cls, last_agent: str | None) -> "DistributionPolicy":
        return cls(mode=AgentMode.ROUND_ROBIN, last_agent=last_agent)


@dataclass(frozen=True, slots=True)
class BackendChoice:
    agent: str
    backend: BackendKind
    model: str | None


__all__ = ["AgentDefinition", "AgentMode", "BackendChoice", "DistributionPolicy"]
