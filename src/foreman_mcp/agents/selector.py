"""Pick the agent that receives the next dispatch."""

from __future__ import annotations

from .catalog import DEFAULT_CATALOG, AgentCatalog
from .models import AgentMode, BackendChoice, DistributionPolicy

ROUND_ROBIN_ORDER = ("claude", "opencode", "gemini")


def next_round_robin_agent(last_agent: str | None) -> str:
    """Return the agent after ``last_agent``; unknown cursors restart the cycle."""

    try:
        index = ROUND_ROBIN_ORDER.index(last_agent or "")
    except ValueError:
        return ROUND_ROBIN_ORDER[0]
    return ROUND_ROBIN_ORDER[(index + 1) % len(ROUND_ROBIN_ORDER)]


def select_backend(
    policy: DistributionPolicy,
    last_used: str | None = None,
    catalog: AgentCatalog = DEFAULT_CATALOG,
) -> BackendChoice:
    """Resolve the policy into an agent, its backend and model.

    Single mode ignores ``last_used``. Round-robin mode advances from the
    policy cursor, falling back to ``last_used`` when the policy has none.
    """

    if policy.mode is AgentMode.SINGLE:
        agent = policy.coding_agent
    else:
        agent = next_round_robin_agent(policy.last_agent or last_used)

    if agent not in catalog:
        agent = ROUND_ROBIN_ORDER[0]

    backend = catalog.backend_for(agent)
    model = policy.models.get(agent) or catalog.default_model(agent)
    return BackendChoice(agent=agent, backend=backend, model=model)


__all__ = ["ROUND_ROBIN_ORDER", "next_round_robin_agent", "select_backend"]
