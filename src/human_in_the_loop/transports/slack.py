"""Slack transport: Web API for messages, Socket Mode websocket for events.

A Slack "thread" is a parent message in the channel; its ``ts`` is the
conversation id and replies carry it as ``thread_ts``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import aiohttp

from ..config import SLACK_API_URL
from ..errors import TransportError, TransportErrorKind
from ..models import Conversation, InboundEvent
from ..readiness import ReadinessGate
from .http import HttpClient, decode_frame, reconnect_backoff

logger = logging.getLogger(__name__)

FORBIDDEN_ERRORS = {
    "invalid_auth",
    "not_authed",
    "account_inactive",
    "token_revoked",
    "missing_scope",
    "not_in_channel",
    "channel_not_found",
    "restricted_action",
}

# Message subtypes that still count as a human reply in a thread
REPLY_SUBTYPES = {None, "thread_broadcast"}


def kind_for_slack_error(error: str | None) -> TransportErrorKind:
    if error == "ratelimited":
        return TransportErrorKind.RATE_LIMITED
    if error in FORBIDDEN_ERRORS:
        return TransportErrorKind.FORBIDDEN
    return TransportErrorKind.UNKNOWN


class SlackTransport:
    """``ChatTransport`` for a Slack app running in Socket Mode."""

    name = "Slack"

    def __init__(
        self,
        bot_token: str,
        app_token: str,
        gate: ReadinessGate,
        api_url: str = SLACK_API_URL,
    ):
        self._app_token = app_token
        self._gate = gate
        self._session_ready = False
        self._http = HttpClient(api_url, headers={"Authorization": f"Bearer {bot_token}"})

    async def send_message(self, conversation: Conversation, text: str) -> None:
        await self._call(
            "chat.postMessage",
            channel=conversation.parent_channel_id,
            thread_ts=conversation.id,
            text=text,
        )

    async def create_sub_conversation(self, parent_channel_id: str, title: str) -> Conversation:
        data = await self._call("chat.postMessage", channel=parent_channel_id, text=title)
        ts = data.get("ts")
        if not ts:
            raise TransportError(TransportErrorKind.UNKNOWN, "Slack did not return a message ts")
        logger.info("Started Slack thread %s in channel %s", ts, parent_channel_id)
        return Conversation(id=ts, parent_channel_id=parent_channel_id, title=title)

    async def events(self) -> AsyncIterator[InboundEvent]:
        """Yield thread replies until Socket Mode fails for good.

        Slack recycles Socket Mode connections routinely with a ``disconnect``
        envelope; each one opens a new connection. Only API errors, connect
        failures and repeated drops before ``hello`` end the stream.
        """
        identity = await self._call("auth.test")
        bot_user_id = str(identity.get("user_id", ""))
        attempts = 0
        while True:
            self._session_ready = False
            async with aclosing(self._socket_session(bot_user_id)) as session:
                async for event in session:
                    yield event
            attempts = 1 if self._session_ready else attempts + 1
            await reconnect_backoff(self.name, attempts)

    async def close(self) -> None:
        await self._http.close()

    async def _socket_session(self, bot_user_id: str) -> AsyncIterator[InboundEvent]:
        connection = await self._call(
            "apps.connections.open", headers={"Authorization": f"Bearer {self._app_token}"}
        )
        if not connection.get("url"):
            raise TransportError(TransportErrorKind.UNKNOWN, "Slack did not return a socket url")
        ws = await self._http.ws_connect(connection["url"])

        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("Slack socket error: %s", ws.exception())
                    return
                if msg.type != aiohttp.WSMsgType.TEXT:
                    continue

                envelope = decode_frame(self.name, msg.data)
                kind = envelope.get("type")
                if kind == "hello":
                    self._session_ready = True
                    self._gate.set(bot_user_id)
                elif kind == "disconnect":
                    logger.info("Slack requested reconnect: %s", envelope.get("reason"))
                    return
                elif envelope.get("envelope_id"):
                    # Unacknowledged envelopes are redelivered by Slack
                    await ws.send_json({"envelope_id": envelope["envelope_id"]})
                    if kind == "events_api":
                        event = parse_message_event(envelope.get("payload") or {})
                        if event is not None:
                            yield event

            logger.warning("Slack socket closed (code %s)", ws.close_code)
        except (ConnectionResetError, aiohttp.ClientError) as exc:
            logger.warning("Slack socket connection lost: %s", exc)
        finally:
            await ws.close()

    async def _call(
        self, method: str, headers: dict[str, str] | None = None, **payload: Any
    ) -> dict[str, Any]:
        data = await self._http.request("POST", method, json=payload or None, headers=headers)
        if not data or not data.get("ok"):
            error = (data or {}).get("error")
            raise TransportError(kind_for_slack_error(error), f"Slack {method} failed: {error}")
        return data


def parse_message_event(payload: dict[str, Any]) -> InboundEvent | None:
    """Turn an Events API payload into an InboundEvent, or None for non-replies."""
    event = payload.get("event") or {}
    if event.get("type") != "message" or event.get("subtype") not in REPLY_SUBTYPES:
        return None

    thread_ts = event.get("thread_ts")
    if not thread_ts or thread_ts == event.get("ts"):
        return None

    return InboundEvent(
        conversation_id=thread_ts,
        channel_id=event.get("channel", ""),
        author_id=event.get("user", ""),
        text=event.get("text", ""),
        is_bot="bot_id" in event,
    )
