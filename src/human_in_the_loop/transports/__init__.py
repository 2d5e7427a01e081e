"""Chat platform transports."""

from __future__ import annotations

from ..config import Settings
from ..readiness import ReadinessGate
from .base import ChatTransport
from .discord import DiscordTransport
from .slack import SlackTransport

__all__ = ["ChatTransport", "DiscordTransport", "SlackTransport", "create_transport"]


def create_transport(settings: Settings, gate: ReadinessGate) -> ChatTransport:
    """Pick the transport for the configured platform."""
    if settings.platform == "slack":
        return SlackTransport(settings.slack_bot_token or "", settings.slack_app_token or "", gate)
    return DiscordTransport(settings.discord_token or "", gate)
