"""human-in-the-loop: ask a human on Discord or Slack from an MCP tool call."""

__version__ = "0.1.0"
