"""Lazily created, cached thread per parent channel."""

from __future__ import annotations

import asyncio
import logging

from .models import Conversation
from .transports.base import ChatTransport

logger = logging.getLogger(__name__)


class ConversationRegistry:
    """Map a parent channel to the one thread this process uses in it.

    Creation is single-flight: callers racing before the cache is populated
    all await the same creation task, so the platform sees one create call.
    If creation fails, every waiter gets the same error and the cache stays
    empty so a later call can try again.
    """

    def __init__(self, transport: ChatTransport):
        self._transport = transport
        self._conversations: dict[str, Conversation] = {}
        self._creating: dict[str, asyncio.Task[Conversation]] = {}

    def get(self, parent_channel_id: str) -> Conversation | None:
        return self._conversations.get(parent_channel_id)

    async def get_or_create(self, parent_channel_id: str, title_hint: str) -> Conversation:
        cached = self._conversations.get(parent_channel_id)
        if cached is not None:
            return cached

        # No await between the lookup and the insert, so this is atomic on the loop
        task = self._creating.get(parent_channel_id)
        if task is None:
            task = asyncio.create_task(
                self._create(parent_channel_id, title_hint),
                name=f"create-conversation-{parent_channel_id}",
            )
            self._creating[parent_channel_id] = task
        else:
            logger.debug("Waiting for in-flight conversation creation in %s", parent_channel_id)

        # Shielded: one waiter being cancelled must not abort creation for the others
        return await asyncio.shield(task)

    async def _create(self, parent_channel_id: str, title: str) -> Conversation:
        try:
            conversation = await self._transport.create_sub_conversation(parent_channel_id, title)
            self._conversations[parent_channel_id] = conversation
            return conversation
        finally:
            self._creating.pop(parent_channel_id, None)
