"""Central configuration: environment variables, defaults and validation."""

from __future__ import annotations

import os

from pydantic import BaseModel

# Platform selection, override with the HUMAN_PLATFORM env var
PLATFORM_ENV = "HUMAN_PLATFORM"
PLATFORMS = ("discord", "slack")
DEFAULT_PLATFORM = "discord"

# Discord credentials and target
DISCORD_TOKEN_ENV = "DISCORD_TOKEN"
DISCORD_CHANNEL_ID_ENV = "DISCORD_CHANNEL_ID"
DISCORD_USER_ID_ENV = "DISCORD_USER_ID"

# Slack credentials and target (bot token for the Web API, app token for Socket Mode)
SLACK_BOT_TOKEN_ENV = "SLACK_BOT_TOKEN"
SLACK_APP_TOKEN_ENV = "SLACK_APP_TOKEN"
SLACK_CHANNEL_ID_ENV = "SLACK_CHANNEL_ID"
SLACK_USER_ID_ENV = "SLACK_USER_ID"

# Optional per-question deadline in seconds; unset means wait forever
REPLY_TIMEOUT_ENV = "HUMAN_REPLY_TIMEOUT"

LOG_LEVEL_ENV = "HUMAN_LOG_LEVEL"
DEFAULT_LOG_LEVEL = os.environ.get(LOG_LEVEL_ENV, "WARNING").upper()

# Platform endpoints
DISCORD_API_URL = "https://discord.com/api/v10"
DISCORD_GATEWAY_VERSION = 10
DISCORD_THREAD_NAME_LIMIT = 100
DISCORD_THREAD_ARCHIVE_MINUTES = 1440  # one day
SLACK_API_URL = "https://slack.com/api"

HTTP_TIMEOUT_SECONDS = 10

# Consecutive websocket sessions allowed to drop before the handshake completes
RECONNECT_ATTEMPTS = 5
RECONNECT_BACKOFF_SECONDS = 2.0

# Required options per platform, as (field name, env var)
REQUIRED_OPTIONS = {
    "discord": (
        ("discord_token", DISCORD_TOKEN_ENV),
        ("discord_channel_id", DISCORD_CHANNEL_ID_ENV),
        ("discord_user_id", DISCORD_USER_ID_ENV),
    ),
    "slack": (
        ("slack_bot_token", SLACK_BOT_TOKEN_ENV),
        ("slack_app_token", SLACK_APP_TOKEN_ENV),
        ("slack_channel_id", SLACK_CHANNEL_ID_ENV),
        ("slack_user_id", SLACK_USER_ID_ENV),
    ),
}


class ConfigError(ValueError):
    """Raised when the process configuration is incomplete or invalid."""


class Settings(BaseModel):
    platform: str = DEFAULT_PLATFORM
    discord_token: str | None = None
    discord_channel_id: str | None = None
    discord_user_id: str | None = None
    slack_bot_token: str | None = None
    slack_app_token: str | None = None
    slack_channel_id: str | None = None
    slack_user_id: str | None = None
    reply_timeout: float | None = None

    @classmethod
    def from_options(cls, **options) -> Settings:
        """Build validated settings from CLI options / environment values.

        Raises ConfigError listing every missing option for the selected
        platform, so the operator can fix them all at once.
        """
        platform = (options.pop("platform", None) or DEFAULT_PLATFORM).lower()
        if platform not in PLATFORMS:
            raise ConfigError(
                f"Unknown platform '{platform}'. Choose one of: {', '.join(PLATFORMS)}"
            )

        values = {
            key: value.strip() if isinstance(value, str) else value
            for key, value in options.items()
        }
        missing = [env for field, env in REQUIRED_OPTIONS[platform] if not values.get(field)]
        if missing:
            raise ConfigError(f"Missing required {platform} configuration: {', '.join(missing)}")

        timeout = values.get("reply_timeout")
        if timeout is not None and timeout <= 0:
            raise ConfigError("Reply timeout must be a positive number of seconds")

        return cls(platform=platform, **values)

    @property
    def channel_id(self) -> str:
        """The parent channel questions are posted under."""
        if self.platform == "slack":
            return self.slack_channel_id or ""
        return self.discord_channel_id or ""

    @property
    def user_id(self) -> str:
        """The human who is mentioned and whose replies are accepted."""
        if self.platform == "slack":
            return self.slack_user_id or ""
        return self.discord_user_id or ""

    def describe(self) -> dict[str, str]:
        """Summary of the resolved target with credentials masked."""
        summary = {
            "platform": self.platform,
            "channel": self.channel_id,
            "user": self.user_id,
            "reply_timeout": f"{self.reply_timeout:g}s" if self.reply_timeout else "none",
        }
        if self.platform == "slack":
            summary["bot_token"] = _mask(self.slack_bot_token)
            summary["app_token"] = _mask(self.slack_app_token)
        else:
            summary["token"] = _mask(self.discord_token)
        return summary


def _mask(secret: str | None) -> str:
    if not secret:
        return "(unset)"
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}…{secret[-4:]}"
