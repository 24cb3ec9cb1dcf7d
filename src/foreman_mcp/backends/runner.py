"""Async runner for the agent command line tools."""

from __future__ import annotations

import asyncio
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}


class BackendError(RuntimeError):
    """Base class for agent backend errors."""


class BackendNotFoundError(BackendError):
    """Raised when a backend executable or server cannot be located."""


class BackendRequestError(BackendError):
    """Raised when a backend was reached but rejected or failed the request."""

    def __init__(self, message: str, *, details: str | None = None) -> None:
        super().__init__(message)
        self.details = details


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


@dataclass(slots=True)
class CliExecutionResult:
    """Holds the outcome of a CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return (self.stdout or self.stderr).strip()


class CliRunner:
    """Execute a backend CLI asynchronously.

    The executable is resolved on first use so that a missing tool only
    fails the dispatches that need it.
    """

    def __init__(
        self,
        program: str,
        executable: Path | None = None,
        *,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._program = program
        self._explicit = Path(executable) if executable is not None else None
        self._executable_path: Path | None = None
        self._timeout = timeout
        self._env = dict(env or {})

    def _resolve_executable(self) -> Path:
        if self._explicit is not None:
            if self._explicit.exists() and self._explicit.is_file():
                return self._explicit
            raise BackendNotFoundError(f"{self._program} executable not found at {self._explicit}")

        binary = shutil.which(self._program)
        if binary is None:
            raise BackendNotFoundError(f"{self._program} CLI executable not found on PATH")
        return Path(binary)

    @property
    def program(self) -> str:
        return self._program

    @property
    def executable(self) -> Path:
        if self._executable_path is None:
            self._executable_path = self._resolve_executable()
        return self._executable_path

    async def run(self, *args: str, cwd: Path | None = None, timeout: float | None = None) -> CliExecutionResult:
        return await self._invoke(*args, cwd=cwd, timeout=timeout if timeout is not None else self._timeout)

    async def _invoke(self, *args: str, cwd: Path | None = None, timeout: float | None = None) -> CliExecutionResult:
        cmd = [str(self.executable), *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=sanitize_environment(self._env),
            )
        except OSError as exc:
            raise BackendNotFoundError(f"Failed to launch {self._program}: {exc}") from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise BackendRequestError(f"{self._program} timed out after {timeout}s") from exc

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return CliExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeCliRunner(CliRunner):
    """Test double that replays canned CLI responses."""

    def __init__(self, responses: Iterable[CliExecutionResult | Exception] | None = None, *, program: str = "fake") -> None:
        super().__init__(program, executable=Path(f"/tmp/fake-{program}"))
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []

    @property
    def executable(self) -> Path:
        return Path(f"/tmp/fake-{self._program}")

    async def _invoke(self, *args: str, cwd: Path | None = None, timeout: float | None = None) -> CliExecutionResult:
        self._invocations.append(tuple(args))
        if self._responses:
            response = self._responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return CliExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations


__all__ = [
    "BackendError",
    "BackendNotFoundError",
    "BackendRequestError",
    "CliExecutionResult",
    "CliRunner",
    "FakeCliRunner",
    "sanitize_environment",
]
