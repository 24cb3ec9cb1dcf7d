"""Persisted agent distribution preferences."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from .models import AgentMode, DistributionPolicy
from .selector import ROUND_ROBIN_ORDER

logger = logging.getLogger(__name__)

VALID_AGENTS = ROUND_ROBIN_ORDER
VALID_MODES = tuple(mode.value for mode in AgentMode)

_TOGGLE_ORDER = {"opencode": "claude", "claude": "gemini", "gemini": "opencode"}

Listener = Callable[[DistributionPolicy], None]


class PreferenceStore:
    """Load, mutate and persist the ``DistributionPolicy``.

    The store owns the process-wide preference state; the selector only
    ever sees an immutable copy through :meth:`policy`.
    """

    def __init__(self, path: Path, *, clock: Callable[[], datetime] | None = None) -> None:
        self._path = Path(path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []
        self._updated_at: str | None = None
        self._policy = self._load()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def updated_at(self) -> str | None:
        return self._updated_at

    def _load(self) -> DistributionPolicy:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No preferences file found, using defaults", extra={"path": str(self._path)})
            return DistributionPolicy()
        except OSError as exc:
            logger.warning("Failed to read preferences file", extra={"path": str(self._path), "error": str(exc)})
            return DistributionPolicy()

        try:
            document = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Failed to parse preferences file, using defaults", extra={"path": str(self._path)})
            return DistributionPolicy()

        policy = DistributionPolicy()
        if document.get("coding_agent") in VALID_AGENTS:
            policy.coding_agent = document["coding_agent"]
        if document.get("agent_mode") in VALID_MODES:
            policy.mode = AgentMode(document["agent_mode"])
        if document.get("last_agent"):
            policy.last_agent = str(document["last_agent"])
        models = document.get("models") or {}
        if isinstance(models, dict):
            policy.models = {str(agent): str(model) for agent, model in models.items() if model}
        self._updated_at = document.get("updated_at")
        return policy

    def _save(self) -> None:
        document = self.as_dict()
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=self._path.name, suffix=".tmp", dir=self._path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
            os.replace(temp_name, self._path)
        except OSError as exc:
            logger.error("Failed to save preferences", extra={"path": str(self._path), "error": str(exc)})

    def _commit(self, policy: DistributionPolicy) -> DistributionPolicy:
        with self._lock:
            self._policy = policy
            self._updated_at = self._clock().isoformat()
            self._save()
            snapshot = self.policy()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # pragma: no cover - listener bugs are not ours
                logger.exception("Preference listener failed")
        return snapshot

    def policy(self) -> DistributionPolicy:
        with self._lock:
            return replace(self._policy, models=dict(self._policy.models))

    def as_dict(self) -> dict[str, object]:
        with self._lock:
            return {
                "coding_agent": self._policy.coding_agent,
                "agent_mode": self._policy.mode.value,
                "last_agent": self._policy.last_agent,
                "models": dict(self._policy.models),
                "updated_at": self._updated_at,
            }

    def set_coding_agent(self, agent: str) -> DistributionPolicy:
        if agent not in VALID_AGENTS:
            raise ValueError(f"Unknown coding agent '{agent}'")
        logger.info("Coding agent set", extra={"agent": agent})
        return self._commit(replace(self.policy(), coding_agent=agent))

    def toggle_coding_agent(self) -> DistributionPolicy:
        current = self.policy().coding_agent
        return self.set_coding_agent(_TOGGLE_ORDER.get(current, "opencode"))

    def set_agent_mode(self, mode: str | AgentMode) -> DistributionPolicy:
        try:
            resolved = AgentMode(mode)
        except ValueError as exc:
            raise ValueError(f"Unknown agent mode '{mode}'") from exc
        logger.info("Agent mode set", extra={"mode": resolved.value})
        return self._commit(replace(self.policy(), mode=resolved))

    def set_model(self, agent: str, model: str | None) -> DistributionPolicy:
        if agent not in VALID_AGENTS:
            raise ValueError(f"Unknown coding agent '{agent}'")
        policy = self.policy()
        if model:
            policy.models[agent] = model
        else:
            policy.models.pop(agent, None)
        return self._commit(policy)

    def record_last_agent(self, agent: str) -> DistributionPolicy:
        """Advance the round-robin cursor after a dispatch."""

        return self._commit(replace(self.policy(), last_agent=agent))

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe


__all__ = ["PreferenceStore", "VALID_AGENTS", "VALID_MODES"]
