"""Built-in agent definitions and YAML overrides."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping

import yaml
from pydantic import ValidationError

from ..work.models import BackendKind
from .models import AgentDefinition

DEFAULT_CLAUDE_MODEL = "anthropic/claude-opus-4-5"
SONNET_MODEL = "anthropic/claude-sonnet-4-20250514"
DEFAULT_OPENCODE_MODEL = "gemini-3-pro"
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"

BUILTIN_AGENTS: dict[str, AgentDefinition] = {
    "claude": AgentDefinition(
        name="claude",
        backend=BackendKind.SUBAGENT,
        default_model=DEFAULT_CLAUDE_MODEL,
        models=[DEFAULT_CLAUDE_MODEL, SONNET_MODEL],
        thinking="low",
        description="Isolated sub-agent spawned through openclaw.",
    ),
    "opencode": AgentDefinition(
        name="opencode",
        backend=BackendKind.INTERACTIVE_SESSION,
        default_model=DEFAULT_OPENCODE_MODEL,
        models=[DEFAULT_OPENCODE_MODEL, "gemini-2.5-pro", "gemini-2.5-flash"],
        description="Interactive coding session on an OpenCode server.",
    ),
    "gemini": AgentDefinition(
        name="gemini",
        backend=BackendKind.CLI_SERVER,
        default_model=DEFAULT_GEMINI_MODEL,
        models=[DEFAULT_GEMINI_MODEL],
        description="Prompt-driven gemini CLI.",
    ),
}


class CatalogLoadError(RuntimeError):
    """Raised when one or more agent definition files cannot be parsed."""


class AgentCatalog:
    """Agent definitions keyed by name, built-ins first then YAML overrides."""

    def __init__(self, agents: Mapping[str, AgentDefinition] | None = None) -> None:
        self._agents: dict[str, AgentDefinition] = dict(BUILTIN_AGENTS if agents is None else agents)

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    def __iter__(self):
        return iter(self._agents)

    def names(self) -> list[str]:
        return list(self._agents)

    def get(self, name: str) -> AgentDefinition | None:
        return self._agents.get(name)

    def backend_for(self, name: str) -> BackendKind | None:
        agent = self._agents.get(name)
        return agent.backend if agent else None

    def default_model(self, name: str) -> str | None:
        agent = self._agents.get(name)
        return agent.default_model if agent else None

    def merged(self, overrides: Mapping[str, AgentDefinition]) -> "AgentCatalog":
        agents = dict(self._agents)
        agents.update(overrides)
        return AgentCatalog(agents)


class CatalogLoader:
    """Loads agent definition overrides from YAML files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_all(self) -> dict[str, AgentDefinition]:
        """Load definitions from all configured search paths.

        Later search paths override earlier ones when agent names collide.
        """

        if not self._search_paths:
            return {}

        agents: dict[str, AgentDefinition] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:  # pragma: no cover - library type
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                try:
                    agent = AgentDefinition.model_validate(document)
                except ValidationError as exc:
                    errors.append(f"Agent definition error in {path}: {exc}")
                    continue

                agents[agent.name] = agent

        if errors:
            raise CatalogLoadError("; ".join(errors))

        return agents


def load_catalog(search_paths: Iterable[Path] | None = None) -> AgentCatalog:
    """Return the built-in catalog with any YAML overrides applied."""

    return AgentCatalog().merged(CatalogLoader(search_paths).load_all())


DEFAULT_CATALOG = AgentCatalog()

__all__ = [
    "AgentCatalog",
    "BUILTIN_AGENTS",
    "CatalogLoadError",
    "CatalogLoader",
    "DEFAULT_CATALOG",
    "DEFAULT_CLAUDE_MODEL",
    "DEFAULT_GEMINI_MODEL",
    "DEFAULT_OPENCODE_MODEL",
    "SONNET_MODEL",
    "load_catalog",
]
