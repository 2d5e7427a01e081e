"""CLI interface for human-in-the-loop."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import sys

import click

from . import __version__
from .config import (
    DEFAULT_LOG_LEVEL,
    DEFAULT_PLATFORM,
    DISCORD_CHANNEL_ID_ENV,
    DISCORD_TOKEN_ENV,
    DISCORD_USER_ID_ENV,
    LOG_LEVEL_ENV,
    PLATFORM_ENV,
    PLATFORMS,
    REPLY_TIMEOUT_ENV,
    SLACK_APP_TOKEN_ENV,
    SLACK_BOT_TOKEN_ENV,
    SLACK_CHANNEL_ID_ENV,
    SLACK_USER_ID_ENV,
    ConfigError,
    Settings,
)


def target_options(func):
    """Platform, credential and target options shared by serve and check."""
    options = [
        click.option(
            "--platform",
            type=click.Choice(PLATFORMS, case_sensitive=False),
            default=DEFAULT_PLATFORM,
            envvar=PLATFORM_ENV,
            show_default=True,
            help="Chat platform to reach the human on",
        ),
        click.option("--discord-token", envvar=DISCORD_TOKEN_ENV, help="Discord bot token"),
        click.option(
            "--discord-channel-id", envvar=DISCORD_CHANNEL_ID_ENV, help="Discord channel for questions"
        ),
        click.option("--discord-user-id", envvar=DISCORD_USER_ID_ENV, help="Discord user to ask"),
        click.option("--slack-bot-token", envvar=SLACK_BOT_TOKEN_ENV, help="Slack bot token (xoxb-)"),
        click.option(
            "--slack-app-token",
            envvar=SLACK_APP_TOKEN_ENV,
            help="Slack app-level token for Socket Mode (xapp-)",
        ),
        click.option("--slack-channel-id", envvar=SLACK_CHANNEL_ID_ENV, help="Slack channel for questions"),
        click.option("--slack-user-id", envvar=SLACK_USER_ID_ENV, help="Slack user to ask"),
        click.option(
            "--reply-timeout",
            type=click.FloatRange(min=0, min_open=True),
            envvar=REPLY_TIMEOUT_ENV,
            help="Give up on a question after this many seconds (default: wait forever)",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _load_settings(options: dict) -> Settings:
    try:
        return Settings.from_options(**options)
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc


@click.group()
@click.version_option(version=__version__, prog_name="human-in-the-loop")
def cli():
    """human-in-the-loop: let an AI assistant ask you questions on Discord or Slack.

    Runs as an MCP server exposing an ask_human tool. Questions are posted in a
    thread under the configured channel, mentioning you, and your reply in that
    thread is returned to the assistant.
    """
    pass


@cli.command()
@target_options
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=DEFAULT_LOG_LEVEL,
    envvar=LOG_LEVEL_ENV,
    show_default=True,
)
def serve(log_level: str, **options):
    """Start the MCP server (stdio transport).

    This is used by Claude Desktop and Claude Code to communicate
    with human-in-the-loop. You usually don't need to run this manually.
    """
    settings = _load_settings(options)

    from .errors import TransportError
    from .server import run

    logging.getLogger().setLevel(log_level.upper())

    try:
        asyncio.run(run(settings))
    except TransportError as exc:
        raise click.ClickException(f"{settings.platform} connection failed: {exc}") from exc
    except KeyboardInterrupt:
        pass


@cli.command()
@target_options
def check(**options):
    """Validate the configuration without connecting to anything."""
    settings = _load_settings(options)

    click.echo()
    click.echo(click.style("Configuration OK", fg="green", bold=True))
    for key, value in settings.describe().items():
        click.echo(f"  {key + ':':<15} {value}")
    click.echo()


@cli.command()
def config():
    """Print the configuration snippet for Claude Desktop and Claude Code."""
    click.echo()
    click.echo(click.style("Claude Desktop", bold=True))
    click.echo("Add this to your Claude Desktop config file:")
    click.echo()

    executable = shutil.which("human-in-the-loop")
    env = {
        DISCORD_TOKEN_ENV: "<bot token>",
        DISCORD_CHANNEL_ID_ENV: "<channel id>",
        DISCORD_USER_ID_ENV: "<your user id>",
    }

    if executable:
        server_config = {"command": executable, "args": ["serve"], "env": env}
    else:
        server_config = {"command": "uvx", "args": ["human-in-the-loop", "serve"], "env": env}

    click.echo(json.dumps({"mcpServers": {"human-in-the-loop": server_config}}, indent=2))
    click.echo()
    click.echo(
        f"For Slack, set {PLATFORM_ENV}=slack with {SLACK_BOT_TOKEN_ENV}, "
        f"{SLACK_APP_TOKEN_ENV}, {SLACK_CHANNEL_ID_ENV} and {SLACK_USER_ID_ENV} instead."
    )
    click.echo()

    if sys.platform == "darwin":
        click.echo(
            "Config file location: "
            "~/Library/Application Support/Claude/claude_desktop_config.json"
        )
    elif sys.platform == "win32":
        click.echo("Config file location: %APPDATA%\\Claude\\claude_desktop_config.json")
    else:
        click.echo("Config file location: ~/.config/Claude/claude_desktop_config.json")

    click.echo()
    click.echo(click.style("Claude Code", bold=True))
    click.echo("Run this command:")
    click.echo()

    env_flags = " ".join(f"-e {name}=..." for name in env)
    if executable:
        click.echo(f"  claude mcp add human-in-the-loop {env_flags} -- {executable} serve")
    else:
        click.echo(f"  claude mcp add human-in-the-loop {env_flags} -- uvx human-in-the-loop serve")

    click.echo()
