"""In-memory stand-ins for the chat platform used across the tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from types import SimpleNamespace
from typing import Any

import aiohttp

from human_in_the_loop.errors import TransportError
from human_in_the_loop.models import Conversation, InboundEvent
from human_in_the_loop.readiness import ReadinessGate


class FakeTransport:
    """ChatTransport that records calls and replays queued inbound events."""

    name = "Fake"

    def __init__(self, gate: ReadinessGate, conversation_id: str = "T1"):
        self.gate = gate
        self.conversation_id = conversation_id
        self.created: list[tuple[str, str]] = []
        self.sent: list[tuple[Conversation, str]] = []
        self.create_error: TransportError | None = None
        self.send_error: TransportError | None = None
        self.hold_create: asyncio.Event | None = None
        self.closed = False
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    async def create_sub_conversation(self, parent_channel_id: str, title: str) -> Conversation:
        self.created.append((parent_channel_id, title))
        if self.hold_create is not None:
            await self.hold_create.wait()
        await asyncio.sleep(0)
        if self.create_error is not None:
            raise self.create_error
        return Conversation(id=self.conversation_id, parent_channel_id=parent_channel_id, title=title)

    async def send_message(self, conversation: Conversation, text: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((conversation, text))

    async def events(self) -> AsyncIterator[InboundEvent]:
        self.gate.set("BOT")
        while True:
            item = await self._queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True

    def push(self, author_id: str, text: str, conversation_id: str | None = None) -> None:
        conversation_id = conversation_id or self.conversation_id
        self._queue.put_nowait(
            InboundEvent(
                conversation_id=conversation_id,
                channel_id=conversation_id,
                author_id=author_id,
                text=text,
            )
        )

    def fail(self, error: Exception) -> None:
        self._queue.put_nowait(error)

    def end(self) -> None:
        self._queue.put_nowait(None)


class FakeWebSocket:
    """Replays canned JSON frames the way aiohttp's websocket iterates them.

    With ``hang`` the socket stays open after the canned frames, delivering
    whatever is passed to ``feed()`` until ``close()`` is called.
    """

    def __init__(self, payloads: list[Any], close_code: int = 1000, hang: bool = False):
        self._messages = [
            SimpleNamespace(
                type=aiohttp.WSMsgType.TEXT,
                data=payload if isinstance(payload, str) else json.dumps(payload),
            )
            for payload in payloads
        ]
        self._hang = hang
        self._live: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.close_code = close_code
        self.closed_with: int | None = None
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self._messages:
            yield message
        while self._hang:
            payload = await self._live.get()
            if payload is None:
                return
            yield SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=json.dumps(payload))

    async def send_json(self, data: dict[str, Any]) -> None:
        self.sent.append(data)

    async def close(self, *, code: int = 1000, message: bytes = b"") -> None:
        if not self.closed:
            self.closed_with = code
        self.closed = True
        self._live.put_nowait(None)

    def feed(self, payload: dict[str, Any]) -> None:
        self._live.put_nowait(payload)

    def exception(self) -> None:
        return None


async def settle(predicate: Callable[[], bool], rounds: int = 100) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")
