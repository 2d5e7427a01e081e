"""One-shot readiness signal set when the chat transport finishes its handshake."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class ReadinessGate:
    """Write-once, read-many cell.

    The transport sets it exactly once with the identity it authenticated as;
    every later ``set`` is ignored. Readers either check ``is_set`` and fail
    fast, or ``wait()`` for it.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._identity: str | None = None

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def identity(self) -> str | None:
        return self._identity

    def set(self, identity: str) -> bool:
        if self._event.is_set():
            logger.debug("Readiness gate already set, ignoring %s", identity)
            return False
        self._identity = identity
        self._event.set()
        logger.info("Chat transport ready as %s", identity)
        return True

    async def wait(self) -> str:
        await self._event.wait()
        return self._identity or ""
