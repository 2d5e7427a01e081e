"""Shared aiohttp plumbing for the platform transports."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp

from ..config import HTTP_TIMEOUT_SECONDS, RECONNECT_ATTEMPTS, RECONNECT_BACKOFF_SECONDS
from ..errors import TransportError, TransportErrorKind

logger = logging.getLogger(__name__)


def kind_for_status(status: int) -> TransportErrorKind:
    """Map an HTTP status code onto the transport error taxonomy."""
    if status in (401, 403):
        return TransportErrorKind.FORBIDDEN
    if status == 429:
        return TransportErrorKind.RATE_LIMITED
    return TransportErrorKind.UNKNOWN


def decode_frame(platform: str, data: str) -> dict[str, Any]:
    """Parse a websocket text frame, which must hold a JSON object."""
    try:
        payload = json.loads(data)
    except ValueError as exc:
        raise TransportError(TransportErrorKind.UNKNOWN, f"{platform} sent malformed JSON") from exc
    if not isinstance(payload, dict):
        raise TransportError(TransportErrorKind.UNKNOWN, f"{platform} sent a non-object frame")
    return payload


async def reconnect_backoff(platform: str, attempts: int) -> None:
    """Wait before the next websocket session, or give up.

    ``attempts`` counts sessions in a row that ended before the platform
    handshake completed. The first reconnect is immediate.
    """
    if attempts > RECONNECT_ATTEMPTS:
        raise TransportError(
            TransportErrorKind.DISCONNECTED,
            f"{platform} dropped the connection {attempts} times in a row",
        )
    delay = RECONNECT_BACKOFF_SECONDS * (attempts - 1)
    logger.warning("Reconnecting to %s in %.0fs (attempt %d)", platform, delay, attempts)
    await asyncio.sleep(delay)


class HttpClient:
    """Lazily created ``aiohttp.ClientSession`` with JSON request helpers.

    Every failure surfaces as ``TransportError``; nothing is retried.
    """

    def __init__(self, base_url: str, headers: dict[str, str] | None = None):
        self._base_url = base_url.rstrip("/")
        self._headers = headers or {}
        self._session: aiohttp.ClientSession | None = None
        self._ws_session: aiohttp.ClientSession | None = None

    async def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=HTTP_TIMEOUT_SECONDS)
            self._session = aiohttp.ClientSession(headers=self._headers, timeout=timeout)
        return self._session

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body (None when empty)."""
        url = f"{self._base_url}/{path.lstrip('/')}"
        session = await self.session()
        try:
            async with session.request(method, url, json=json, headers=headers) as response:
                if response.status >= 400:
                    body = await response.text()
                    logger.warning("%s %s failed with %s: %s", method, path, response.status, body[:200])
                    raise TransportError(
                        kind_for_status(response.status),
                        f"{method} {path} returned HTTP {response.status}",
                    )
                if response.status == 204:
                    return None
                return await response.json(content_type=None)
        except (TimeoutError, aiohttp.ClientError) as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise TransportError(TransportErrorKind.DISCONNECTED, f"{method} {path}: {exc}") from exc

    async def ws_connect(self, url: str) -> aiohttp.ClientWebSocketResponse:
        """Open a long-lived websocket on its own session (no total timeout)."""
        if self._ws_session is None or self._ws_session.closed:
            timeout = aiohttp.ClientTimeout(total=None, sock_connect=HTTP_TIMEOUT_SECONDS)
            self._ws_session = aiohttp.ClientSession(timeout=timeout)
        try:
            return await self._ws_session.ws_connect(url, autoping=True)
        except (TimeoutError, aiohttp.ClientError) as exc:
            logger.warning("Websocket connect failed: %s", exc)
            raise TransportError(TransportErrorKind.DISCONNECTED, f"websocket: {exc}") from exc

    async def close(self) -> None:
        for session in (self._session, self._ws_session):
            if session and not session.closed:
                await session.close()
        self._session = None
        self._ws_session = None
