"""Agent catalog, distribution policy and backend selection."""

from .catalog import DEFAULT_CATALOG, AgentCatalog, CatalogLoadError, CatalogLoader, load_catalog
from .models import AgentDefinition, AgentMode, BackendChoice, DistributionPolicy
from .preferences import PreferenceStore
from .selector import ROUND_ROBIN_ORDER, next_round_robin_agent, select_backend

__all__ = [
    "AgentCatalog",
    "AgentDefinition",
    "AgentMode",
    "BackendChoice",
    "CatalogLoadError",
    "CatalogLoader",
    "DEFAULT_CATALOG",
    "DistributionPolicy",
    "PreferenceStore",
    "ROUND_ROBIN_ORDER",
    "load_catalog",
    "next_round_robin_agent",
    "select_backend",
]
