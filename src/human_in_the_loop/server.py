"""FastMCP server exposing the ask_human tool, raced against the chat event loop."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Annotated, Protocol

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from . import __version__
from .broker import HumanQueryBroker
from .config import DEFAULT_LOG_LEVEL, Settings
from .errors import TransportError, TransportErrorKind
from .readiness import ReadinessGate
from .tools import QUESTION_DESCRIPTION, TOOL_DESCRIPTION, TOOL_NAME, ToolInvocationAdapter
from .transports import create_transport

# Logging to stderr only: stdout is the MCP JSON-RPC transport
logging.basicConfig(
    level=DEFAULT_LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)

logger = logging.getLogger(__name__)

SERVER_NAME = "Human in the loop"
INSTRUCTIONS = (
    "This is a Human-in-the-Loop MCP server that enables AI assistants to request "
    "information from humans via Discord or Slack. Use the 'ask_human' tool when you need "
    "information that only a human would know, such as: personal preferences, "
    "project-specific context, local environment details, or any information that "
    "is not publicly available or documented. The human will be notified in the chat "
    "and their response will be returned to you."
)


class StdioServer(Protocol):
    async def run_stdio_async(self) -> None: ...


def build_server(adapter: ToolInvocationAdapter) -> FastMCP:
    """Create the FastMCP server with the ask_human tool bound to ``adapter``."""
    mcp = FastMCP(SERVER_NAME, instructions=INSTRUCTIONS)

    @mcp.tool(
        name=TOOL_NAME,
        description=TOOL_DESCRIPTION,
        annotations=ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
            openWorldHint=False,
        ),
    )
    async def ask_human(question: Annotated[str, Field(description=QUESTION_DESCRIPTION)]) -> str:
        return await adapter.call({"question": question})

    return mcp


async def serve(server: StdioServer, broker: HumanQueryBroker) -> None:
    """Run the MCP stdio loop and the chat event loop until either stops.

    The transport is closed and every pending question cancelled on the way
    out. If the chat side stops first, that is raised as a TransportError so
    the caller can report it.
    """
    mcp_task = asyncio.create_task(server.run_stdio_async(), name="mcp-server")
    events_task = asyncio.create_task(broker.dispatch_events(), name="chat-events")
    try:
        done, _ = await asyncio.wait({mcp_task, events_task}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            task.result()
        if events_task in done:
            raise TransportError(
                TransportErrorKind.DISCONNECTED,
                f"The connection with {broker.transport.name} was closed",
            )
        logger.info("MCP client disconnected, shutting down")
    finally:
        for task in (mcp_task, events_task):
            task.cancel()
        await asyncio.gather(mcp_task, events_task, return_exceptions=True)
        broker.shutdown()
        await broker.transport.close()


async def run(settings: Settings) -> None:
    """Wire gate, transport, broker and MCP server from ``settings`` and serve."""
    gate = ReadinessGate()
    transport = create_transport(settings, gate)
    broker = HumanQueryBroker(
        transport,
        gate,
        channel_id=settings.channel_id,
        user_id=settings.user_id,
        reply_timeout=settings.reply_timeout,
    )
    server = build_server(ToolInvocationAdapter(broker))
    logger.info(
        "human-in-the-loop %s serving %s channel %s for user %s",
        __version__,
        settings.platform,
        settings.channel_id,
        settings.user_id,
    )
    await serve(server, broker)
