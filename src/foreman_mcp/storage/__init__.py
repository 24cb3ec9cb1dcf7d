"""Storage abstractions for Foreman MCP."""

from .activity import ActivityEvent, ActivityLog
from .chroma import ChromaEvent, ChromaStore, ChromaUnavailableError
from .work_tracker import TrackerResult, WorkTracker

__all__ = [
    "ActivityEvent",
    "ActivityLog",
    "ChromaEvent",
    "ChromaStore",
    "ChromaUnavailableError",
    "TrackerResult",
    "WorkTracker",
]
