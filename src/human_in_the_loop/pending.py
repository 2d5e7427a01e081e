"""Table of questions waiting for a reply, keyed by conversation id.

Every method is synchronous and never awaits, so each one runs atomically
with respect to the others on the event loop. A slot is removed from the
table at the moment it is resolved or cancelled; whatever arrives for the
same key afterwards finds nothing and is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .errors import AskCancelledError, CancelReason, DuplicateKeyError

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    key: str
    future: asyncio.Future[str]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class WaitHandle:
    """The caller's side of a pending slot."""

    def __init__(self, table: PendingRequestTable, request: PendingRequest):
        self._table = table
        self._request = request

    @property
    def key(self) -> str:
        return self._request.key

    async def wait(self, timeout: float | None = None) -> str:
        """Suspend until the slot is resolved or cancelled.

        Returns the reply text. Raises AskCancelledError when the slot is
        cancelled, including by its own timeout. If the waiting task is
        cancelled, the slot is dropped so a late reply cannot land in it.
        """
        future = self._request.future
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except TimeoutError:
            self._table.cancel(self.key, CancelReason.TIMEOUT, self._request)
            if not future.done():
                raise AskCancelledError(CancelReason.TIMEOUT) from None
            # Either the timeout cancellation or a reply that beat it
            return future.result()
        except asyncio.CancelledError:
            self._table.discard(self.key, self._request)
            raise


class PendingRequestTable:
    def __init__(self) -> None:
        self._requests: dict[str, PendingRequest] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._requests

    def __len__(self) -> int:
        return len(self._requests)

    def keys(self) -> list[str]:
        return list(self._requests)

    def register(self, key: str) -> WaitHandle:
        if key in self._requests:
            raise DuplicateKeyError(key)
        request = PendingRequest(key=key, future=asyncio.get_running_loop().create_future())
        self._requests[key] = request
        logger.debug("Registered pending request %s", key)
        return WaitHandle(self, request)

    def resolve(self, key: str, answer: str) -> bool:
        """Complete the slot for ``key`` with ``answer``; False if there is none."""
        request = self._requests.pop(key, None)
        if request is None or request.future.done():
            return False
        request.future.set_result(answer)
        logger.debug("Resolved pending request %s", key)
        return True

    def cancel(self, key: str, reason: CancelReason, request: PendingRequest | None = None) -> bool:
        """Fail the slot for ``key`` with ``reason``; False if there is none.

        With ``request`` given, a newer registration under the same key is left alone.
        """
        current = self._requests.get(key)
        if current is None or (request is not None and current is not request):
            return False
        del self._requests[key]
        if current.future.done():
            return False
        current.future.set_exception(AskCancelledError(reason))
        logger.info("Cancelled pending request %s (%s)", key, reason.value)
        return True

    def cancel_all(self, reason: CancelReason) -> int:
        return sum(self.cancel(key, reason) for key in self.keys())

    def discard(self, key: str, request: PendingRequest | None = None) -> None:
        """Drop the slot without waking anyone.

        With ``request`` given, only that exact registration is removed.
        """
        current = self._requests.get(key)
        if current is None or (request is not None and current is not request):
            return
        del self._requests[key]
        if not current.future.done():
            current.future.cancel()
        logger.debug("Discarded pending request %s", key)
