"""Data models for conversations and inbound chat events."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Conversation(BaseModel):
    """A thread opened under a parent channel.

    ``id`` is what the platform reports replies against: the thread channel id
    on Discord, the parent message ``ts`` on Slack.
    """

    id: str
    parent_channel_id: str
    title: str = ""
    created_at: datetime = Field(default_factory=_utcnow)


class InboundEvent(BaseModel):
    """A message posted somewhere the bot can see, normalized across platforms."""

    conversation_id: str
    channel_id: str
    author_id: str
    text: str
    is_bot: bool = False
