"""Prompt-driven gemini CLI exposed as a start/stop server."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .runner import BackendNotFoundError, BackendRequestError, CliRunner

logger = logging.getLogger(__name__)

OUTPUT_LINES = 200


class CliServer:
    """Track a gemini CLI "server" that answers one prompt at a time.

    The CLI has no interactive mode without a TTY, so every prompt is a
    one-shot run in the configured working directory.
    """

    def __init__(self, runner: CliRunner, *, cwd: Path | None = None, prompt_timeout: float | None = None) -> None:
        self._runner = runner
        self._cwd = Path(cwd) if cwd else None
        self._prompt_timeout = prompt_timeout
        self._running = False
        self._busy = False
        self._started_at: datetime | None = None
        self._version: str | None = None
        self._output: deque[str] = deque(maxlen=OUTPUT_LINES)
        self._task: asyncio.Task[None] | None = None

    def running(self) -> bool:
        return self._running

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def last_task(self) -> asyncio.Task[None] | None:
        return self._task

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "busy": self._busy,
            "cwd": str(self._cwd) if self._cwd else None,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "version": self._version,
        }

    def output(self) -> list[str]:
        return list(self._output)

    async def start(self) -> str:
        """Verify the CLI responds and mark the server running.

        Returns the CLI version string.
        """

        if self._running:
            return self._version or ""
        result = await self._runner.run("--version")
        if not result.ok:
            raise BackendRequestError("gemini --version failed", details=result.output or None)
        self._version = result.output
        self._running = True
        self._started_at = datetime.now(timezone.utc)
        logger.info("Gemini CLI server started", extra={"version": self._version, "cwd": str(self._cwd)})
        return self._version

    def stop(self) -> None:
        self._running = False
        self._busy = False
        self._started_at = None
        logger.info("Gemini CLI server stopped")

    async def _run_prompt(self, prompt: str) -> None:
        self._output.append(f"> {prompt}")
        try:
            result = await self._runner.run(prompt, cwd=self._cwd, timeout=self._prompt_timeout)
        except (BackendNotFoundError, BackendRequestError) as exc:
            logger.warning("Gemini prompt failed", extra={"error": str(exc)})
            self._output.append(f"Error: {exc}")
        else:
            if result.output:
                self._output.extend(result.output.splitlines())
            if not result.ok:
                logger.warning("Gemini prompt exited non-zero", extra={"returncode": result.returncode})
                self._output.append(f"[Exit code: {result.returncode}]")
        finally:
            self._busy = False

    async def send_prompt(self, text: str) -> None:
        """Queue ``text`` as the next one-shot run; errors when stopped or busy."""

        if not self._running:
            raise BackendNotFoundError("Gemini server not running")
        if self._busy:
            raise BackendRequestError("Gemini is busy processing another prompt")
        self._busy = True
        self._task = asyncio.ensure_future(self._run_prompt(text))


__all__ = ["CliServer"]
