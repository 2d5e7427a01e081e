"""Turn a tool call into a chat message and wait for the human's reply.

Two loops meet here: callers of ``ask`` suspend on a pending slot, and
``dispatch_events`` consumes the transport's inbound stream and resolves
the slot whose conversation the human answered in.
"""

from __future__ import annotations

import logging

from .errors import (
    AlreadyPendingError,
    AskTransportError,
    CancelReason,
    DuplicateKeyError,
    NotReadyError,
    TransportError,
)
from .models import InboundEvent
from .pending import PendingRequestTable
from .readiness import ReadinessGate
from .registry import ConversationRegistry
from .transports.base import ChatTransport

logger = logging.getLogger(__name__)


def format_question(user_id: str, question: str) -> str:
    return f"<@{user_id}> {question}"


class HumanQueryBroker:
    """Ask one configured human questions in one configured channel."""

    def __init__(
        self,
        transport: ChatTransport,
        gate: ReadinessGate,
        *,
        channel_id: str,
        user_id: str,
        registry: ConversationRegistry | None = None,
        pending: PendingRequestTable | None = None,
        reply_timeout: float | None = None,
    ):
        self.transport = transport
        self.gate = gate
        self.channel_id = channel_id
        self.user_id = user_id
        self.registry = registry or ConversationRegistry(transport)
        self.pending = pending or PendingRequestTable()
        self.reply_timeout = reply_timeout

    async def ask(self, question: str) -> str:
        """Post ``question`` to the human and return their reply.

        Raises NotReadyError, AskTransportError, AlreadyPendingError or
        AskCancelledError.
        """
        if not self.gate.is_set:
            raise NotReadyError(self.transport.name)

        try:
            conversation = await self.registry.get_or_create(self.channel_id, question)
        except TransportError as exc:
            raise AskTransportError(exc) from exc

        # Register before sending so a second question fails without posting anything
        try:
            handle = self.pending.register(conversation.id)
        except DuplicateKeyError:
            raise AlreadyPendingError(conversation.id) from None

        try:
            await self.transport.send_message(conversation, format_question(self.user_id, question))
        except BaseException as exc:
            self.pending.discard(handle.key)
            if isinstance(exc, TransportError):
                raise AskTransportError(exc) from exc
            raise

        logger.info("Asked %s in conversation %s", self.user_id, conversation.id)
        answer = await handle.wait(self.reply_timeout)
        logger.info("Got answer in conversation %s", conversation.id)
        return answer

    def matches(self, event: InboundEvent) -> bool:
        return event.author_id == self.user_id and event.conversation_id in self.pending

    def handle_event(self, event: InboundEvent) -> bool:
        """Resolve the pending question ``event`` answers. False if it answers none."""
        if not self.matches(event):
            logger.debug(
                "Dropping message from %s in %s", event.author_id, event.conversation_id
            )
            return False
        return self.pending.resolve(event.conversation_id, event.text)

    async def dispatch_events(self) -> None:
        """Feed the transport's inbound stream into the pending table.

        Runs until the stream ends. However it ends, every question still
        waiting is cancelled, since no reply can arrive any more. Stream
        errors are re-raised after that.
        """
        logger.info("Listening for %s events", self.transport.name)
        try:
            async for event in self.transport.events():
                self.handle_event(event)
            logger.warning("%s event stream ended", self.transport.name)
        except TransportError as exc:
            logger.error("%s event stream failed: %s", self.transport.name, exc)
            raise
        finally:
            self.shutdown()

    def shutdown(self) -> int:
        cancelled = self.pending.cancel_all(CancelReason.SHUTTING_DOWN)
        if cancelled:
            logger.warning("Cancelled %d pending question(s) on shutdown", cancelled)
        return cancelled
