"""Clients for the three agent backends."""

from .cli_server import CliServer
from .runner import (
    BackendError,
    BackendNotFoundError,
    BackendRequestError,
    CliExecutionResult,
    CliRunner,
    FakeCliRunner,
)
from .session_client import SessionClient, SessionHandle
from .subagent import SpawnedJob, SubagentSpawner

__all__ = [
    "BackendError",
    "BackendNotFoundError",
    "BackendRequestError",
    "CliExecutionResult",
    "CliRunner",
    "CliServer",
    "FakeCliRunner",
    "SessionClient",
    "SessionHandle",
    "SpawnedJob",
    "SubagentSpawner",
]
