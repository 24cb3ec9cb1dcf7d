"""Work dispatch: prompts, outcomes and the dispatcher."""

from .dispatcher import WorkDispatcher, format_spawn_error, work_label
from .errors import AlreadyInProgress, BackendUnavailable, DispatchError, DispatchResult, SpawnFailed

__all__ = [
    "AlreadyInProgress",
    "BackendUnavailable",
    "DispatchError",
    "DispatchResult",
    "SpawnFailed",
    "WorkDispatcher",
    "format_spawn_error",
    "work_label",
]
