"""Discord transport: REST for threads and messages, Gateway websocket for events.

Talks to the Discord API directly over aiohttp. Only the pieces the broker
needs are implemented: IDENTIFY with the guild message intents, heartbeats,
READY and MESSAGE_CREATE dispatches. Resuming is not supported: whenever
Discord drops or recycles the gateway a fresh session is identified, so
messages sent during the gap are not seen.
"""

from __future__ import annotations

import asyncio
import logging
import random
import sys
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import aiohttp

from ..config import (
    DISCORD_API_URL,
    DISCORD_GATEWAY_VERSION,
    DISCORD_THREAD_ARCHIVE_MINUTES,
    DISCORD_THREAD_NAME_LIMIT,
)
from ..errors import TransportError, TransportErrorKind
from ..models import Conversation, InboundEvent
from ..readiness import ReadinessGate
from .http import HttpClient, decode_frame, reconnect_backoff

logger = logging.getLogger(__name__)

# Gateway opcodes
OP_DISPATCH = 0
OP_HEARTBEAT = 1
OP_IDENTIFY = 2
OP_RECONNECT = 7
OP_INVALID_SESSION = 9
OP_HELLO = 10
OP_HEARTBEAT_ACK = 11

INTENT_GUILD_MESSAGES = 1 << 9
INTENT_MESSAGE_CONTENT = 1 << 15

PUBLIC_THREAD = 11

# Close codes after which reconnecting with the same token is pointless
FATAL_CLOSE_CODES = {4004, 4010, 4011, 4012, 4013, 4014}

# Close code for a connection that stopped acknowledging heartbeats
ZOMBIE_CLOSE_CODE = 4000


class DiscordTransport:
    """``ChatTransport`` for a Discord bot."""

    name = "Discord"

    def __init__(self, token: str, gate: ReadinessGate, api_url: str = DISCORD_API_URL):
        self._token = token
        self._gate = gate
        self._http = HttpClient(api_url, headers={"Authorization": f"Bot {token}"})
        self._sequence: int | None = None
        self._heartbeat_acked = True
        self._session_ready = False
        self._intents = INTENT_GUILD_MESSAGES | INTENT_MESSAGE_CONTENT

    async def send_message(self, conversation: Conversation, text: str) -> None:
        await self._http.request(
            "POST", f"/channels/{conversation.id}/messages", json={"content": text}
        )

    async def create_sub_conversation(self, parent_channel_id: str, title: str) -> Conversation:
        name = thread_name(title)
        data = await self._http.request(
            "POST",
            f"/channels/{parent_channel_id}/threads",
            json={
                "name": name,
                "auto_archive_duration": DISCORD_THREAD_ARCHIVE_MINUTES,
                "type": PUBLIC_THREAD,
            },
        )
        if not data or "id" not in data:
            raise TransportError(TransportErrorKind.UNKNOWN, "Discord did not return a thread id")
        logger.info("Created Discord thread %s under channel %s", data["id"], parent_channel_id)
        return Conversation(id=str(data["id"]), parent_channel_id=parent_channel_id, title=name)

    async def events(self) -> AsyncIterator[InboundEvent]:
        """Yield inbound messages until the gateway fails for good.

        RECONNECT, INVALID SESSION, a missed heartbeat ACK or a dropped socket
        start a fresh session with a new IDENTIFY. Only fatal close codes,
        connect failures and repeated drops before READY end the stream.
        """
        attempts = 0
        while True:
            self._session_ready = False
            async with aclosing(self._gateway_session()) as session:
                async for event in session:
                    yield event
            attempts = 1 if self._session_ready else attempts + 1
            await reconnect_backoff(self.name, attempts)

    async def close(self) -> None:
        await self._http.close()

    async def _gateway_session(self) -> AsyncIterator[InboundEvent]:
        self._sequence = None
        gateway = await self._http.request("GET", "/gateway/bot")
        if not gateway or not gateway.get("url"):
            raise TransportError(TransportErrorKind.UNKNOWN, "Discord did not return a gateway url")
        url = f"{gateway['url']}/?v={DISCORD_GATEWAY_VERSION}&encoding=json"
        ws = await self._http.ws_connect(url)
        heartbeat: asyncio.Task[None] | None = None

        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("Discord gateway error: %s", ws.exception())
                    return
                if msg.type != aiohttp.WSMsgType.TEXT:
                    continue

                payload = decode_frame(self.name, msg.data)
                op = payload.get("op")
                if payload.get("s") is not None:
                    self._sequence = payload["s"]

                if op == OP_HELLO:
                    interval = (payload.get("d") or {}).get("heartbeat_interval", 41250) / 1000
                    self._heartbeat_acked = True
                    heartbeat = asyncio.create_task(
                        self._heartbeat(ws, interval), name="discord-heartbeat"
                    )
                    await ws.send_json(self._identify_payload())
                elif op == OP_HEARTBEAT_ACK:
                    self._heartbeat_acked = True
                elif op == OP_HEARTBEAT:
                    await ws.send_json({"op": OP_HEARTBEAT, "d": self._sequence})
                elif op in (OP_RECONNECT, OP_INVALID_SESSION):
                    logger.info("Discord asked the gateway to reconnect (op %s)", op)
                    return
                elif op == OP_DISPATCH:
                    event = self._handle_dispatch(payload.get("t"), payload.get("d") or {})
                    if event is not None:
                        yield event

            if ws.close_code in FATAL_CLOSE_CODES:
                raise TransportError(
                    TransportErrorKind.FORBIDDEN,
                    f"Discord closed the gateway with code {ws.close_code}",
                )
            logger.warning("Discord gateway closed (code %s)", ws.close_code)
        except (ConnectionResetError, aiohttp.ClientError) as exc:
            logger.warning("Discord gateway connection lost: %s", exc)
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
            await ws.close()

    def _identify_payload(self) -> dict[str, Any]:
        return {
            "op": OP_IDENTIFY,
            "d": {
                "token": self._token,
                "intents": self._intents,
                "properties": {
                    "os": sys.platform,
                    "browser": "human-in-the-loop",
                    "device": "human-in-the-loop",
                },
            },
        }

    def _handle_dispatch(self, event_type: str | None, data: dict[str, Any]) -> InboundEvent | None:
        if event_type == "READY":
            self._session_ready = True
            self._gate.set(str((data.get("user") or {}).get("id", "")))
            return None
        if event_type != "MESSAGE_CREATE":
            return None

        author = data.get("author") or {}
        return InboundEvent(
            conversation_id=str(data.get("channel_id", "")),
            channel_id=str(data.get("channel_id", "")),
            author_id=str(author.get("id", "")),
            text=data.get("content", ""),
            is_bot=bool(author.get("bot", False)),
        )

    async def _heartbeat(self, ws: aiohttp.ClientWebSocketResponse, interval: float) -> None:
        # First beat is jittered as the gateway docs require
        await asyncio.sleep(interval * random.random())
        try:
            while not ws.closed:
                if not self._heartbeat_acked:
                    # Zombied connection: the socket is open but Discord stopped answering
                    logger.warning("Discord did not acknowledge the last heartbeat, reconnecting")
                    await ws.close(code=ZOMBIE_CLOSE_CODE)
                    return
                self._heartbeat_acked = False
                await ws.send_json({"op": OP_HEARTBEAT, "d": self._sequence})
                await asyncio.sleep(interval)
        except (ConnectionResetError, aiohttp.ClientError):
            logger.debug("Discord heartbeat stopped, gateway connection is closing")


def thread_name(title: str) -> str:
    """Discord thread names must be 1-100 characters."""
    name = " ".join(title.split()) or "Question"
    if len(name) > DISCORD_THREAD_NAME_LIMIT:
        name = name[: DISCORD_THREAD_NAME_LIMIT - 1] + "…"
    return name
