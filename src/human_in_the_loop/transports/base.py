"""Capability protocol every chat platform adapter implements."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from ..models import Conversation, InboundEvent


@runtime_checkable
class ChatTransport(Protocol):
    """Send into channels and threads, open threads, and stream inbound messages.

    Implementations raise ``TransportError`` for every platform failure and
    never retry a request on their own.
    """

    name: str

    async def send_message(self, conversation: Conversation, text: str) -> None:
        """Post ``text`` into an existing thread."""
        ...

    async def create_sub_conversation(self, parent_channel_id: str, title: str) -> Conversation:
        """Open a new thread under ``parent_channel_id``."""
        ...

    def events(self) -> AsyncIterator[InboundEvent]:
        """Connect and yield inbound messages until the platform fails for good.

        Sets the readiness gate once the platform handshake completes. Routine
        reconnects requested by the platform happen inside the stream; once
        it ends or raises it cannot be resumed.
        """
        ...

    async def close(self) -> None:
        """Release the HTTP session and any open connection."""
        ...
