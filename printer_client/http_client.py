"""Async HTTP request client for the print service.

Uses httpx for async HTTP. Every POST resolves to a :class:`RequestResult`
instead of raising, so callers branch on ``result.ok`` rather than wiring
separate success and failure callbacks.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from .state import DeviceState

logger = logging.getLogger(__name__)

UnauthorizedHandler = Callable[[], Optional[Awaitable[None]]]


@dataclass(frozen=True)
class RequestResult:
    """Outcome of one POST.

    ``status`` is 0 when the request never produced a response
    (connection refused, timeout, DNS failure).
    """

    endpoint: str
    status: int
    body: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status < 300


class HttpClient:
    """Thin async wrapper posting JSON to the print service.

    A single :class:`httpx.AsyncClient` is reused across calls for connection
    pooling and keep-alive.  Call :meth:`aclose` (or use as an async context
    manager) when done.

    Parameters
    ----------
    state:
        Device state; its ``auth_token`` is sent with every request.
    on_unauthorized:
        Called when the server answers 403. The runner uses this to force
        re-registration. May be a plain function or a coroutine function.
    """

    def __init__(
        self,
        state: DeviceState,
        timeout: float = 10.0,
        on_unauthorized: UnauthorizedHandler | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.state = state
        self.timeout = timeout
        self.on_unauthorized = on_unauthorized
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._tasks: set[asyncio.Task] = set()

    async def aclose(self) -> None:
        """Close the underlying HTTP client and free resources."""
        await self._client.aclose()

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def post(self, endpoint: str, body: Any = None) -> RequestResult:
        """POST *body* as JSON to *endpoint*."""
        try:
            response = await self._client.post(endpoint, json=body, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("POST %s failed: %s", endpoint, exc)
            return RequestResult(endpoint=endpoint, status=0, error=str(exc) or type(exc).__name__)

        if response.is_success:
            logger.debug("POST %s -> %d", endpoint, response.status_code)
            return RequestResult(endpoint=endpoint, status=response.status_code, body=response.text)

        logger.warning("POST %s returned %d", endpoint, response.status_code)
        if response.status_code == 403:
            self._unauthorized()
        return RequestResult(
            endpoint=endpoint,
            status=response.status_code,
            body=response.text,
            error=f"HTTP {response.status_code}",
        )

    def _unauthorized(self) -> None:
        if self.on_unauthorized is None:
            return
        logger.warning("Server rejected auth token, forcing re-registration")
        outcome = self.on_unauthorized()
        if asyncio.iscoroutine(outcome):
            task = asyncio.ensure_future(outcome)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.state.auth_token:
            headers["Authorization"] = f"Bearer {self.state.auth_token}"
        return headers
