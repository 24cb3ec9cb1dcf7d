"""HTTP client for an OpenCode-style interactive coding-session server."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from ..work.models import AgentSession, BackendKind, SessionStatus
from .runner import BackendNotFoundError, BackendRequestError

logger = logging.getLogger(__name__)

ACTIVE_WINDOW_SECONDS = 60
LIST_TIMEOUT_SECONDS = 5.0


@dataclass(slots=True)
class SessionHandle:
    session_id: str
    slug: str | None = None


def _session_status(payload: dict[str, Any], now: datetime) -> SessionStatus:
    updated = (payload.get("time") or {}).get("updated")
    if isinstance(updated, (int, float)):
        updated_at = datetime.fromtimestamp(updated / 1000, tz=timezone.utc)
        if (now - updated_at).total_seconds() < ACTIVE_WINDOW_SECONDS:
            return SessionStatus.RUNNING
    return SessionStatus.IDLE


class SessionClient:
    """Create sessions and hand them a prompt.

    The message post blocks until the agent finishes its turn, so it runs
    as a background task once the session exists.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Wait for in-flight message posts and shut down the HTTP client."""

        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.ConnectError as exc:
            raise BackendNotFoundError(f"Session server not reachable at {self._base_url}") from exc
        except httpx.TimeoutException as exc:
            raise BackendRequestError(f"Session server timed out on {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise BackendRequestError(f"Session server request failed: {exc}") from exc
        if response.status_code >= 400:
            raise BackendRequestError(
                f"Session server returned HTTP {response.status_code} for {method} {path}",
                details=response.text[:500] or None,
            )
        return response

    async def health_check(self) -> bool:
        try:
            await self._request("GET", "/session", timeout=LIST_TIMEOUT_SECONDS)
        except (BackendNotFoundError, BackendRequestError):
            return False
        return True

    async def create_session(self) -> SessionHandle:
        response = await self._request("POST", "/session", json={})
        body = response.json()
        session_id = body.get("id") if isinstance(body, dict) else None
        if not session_id:
            raise BackendRequestError("Session server did not return a session id", details=response.text[:500])
        logger.info("Created coding session", extra={"session_id": session_id, "slug": body.get("slug")})
        return SessionHandle(session_id=str(session_id), slug=body.get("slug"))

    async def _post_message(self, session_id: str, prompt: str) -> None:
        payload = {"parts": [{"type": "text", "text": prompt}]}
        try:
            await self._request("POST", f"/session/{session_id}/message", json=payload, timeout=None)
        except (BackendNotFoundError, BackendRequestError) as exc:
            logger.warning("Message to coding session failed", extra={"session_id": session_id, "error": str(exc)})

    def send_message(self, session_id: str, prompt: str) -> asyncio.Task[None]:
        task = asyncio.ensure_future(self._post_message(session_id, prompt))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def send_task(self, prompt: str, model: str | None = None) -> SessionHandle:
        """Open a session and hand it ``prompt``.

        ``model`` is accepted for symmetry with the other backends; the
        server applies its own model configuration.
        """

        logger.info("Sending task to coding session server", extra={"model": model or "default"})
        handle = await self.create_session()
        self.send_message(handle.session_id, prompt)
        return handle

    async def list_sessions(self) -> list[AgentSession]:
        response = await self._request("GET", "/session", timeout=LIST_TIMEOUT_SECONDS)
        body = response.json()
        now = datetime.now(timezone.utc)
        sessions: list[AgentSession] = []
        for entry in body if isinstance(body, list) else []:
            if not isinstance(entry, dict) or not entry.get("id"):
                continue
            # Child sessions belong to their parent's run.
            if entry.get("parentID"):
                continue
            sessions.append(
                AgentSession(
                    id=str(entry["id"]),
                    backend=BackendKind.INTERACTIVE_SESSION,
                    status=_session_status(entry, now),
                    slug=entry.get("slug"),
                    title=entry.get("title") or entry.get("slug"),
                )
            )
        return sessions


__all__ = ["SessionClient", "SessionHandle"]
