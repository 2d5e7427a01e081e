"""The ``ask_human`` tool: argument decoding and error mapping around the broker."""

from __future__ import annotations

import logging
from typing import Any

from mcp.server.fastmcp.exceptions import ToolError
from pydantic import BaseModel, Field, ValidationError, field_validator

from .broker import HumanQueryBroker
from .errors import AskError

logger = logging.getLogger(__name__)

TOOL_NAME = "ask_human"
TOOL_DESCRIPTION = (
    "Ask a human for information that only they would know, such as personal preferences, "
    "project-specific context, local environment details, or non-public information"
)
QUESTION_DESCRIPTION = (
    "The question to ask the human. Be specific and provide context to help the human "
    "understand what information you need."
)


class InvalidToolParamsError(ToolError):
    """The tool arguments could not be decoded into a question."""


class AskHumanParams(BaseModel):
    question: str = Field(description=QUESTION_DESCRIPTION)

    @field_validator("question")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("question must not be empty")
        return value


class ToolInvocationAdapter:
    """Decode ``ask_human`` arguments, call the broker, encode the outcome.

    This is the only place broker errors become tool errors.
    """

    def __init__(self, broker: HumanQueryBroker):
        self.broker = broker

    async def call(self, arguments: dict[str, Any]) -> str:
        try:
            params = AskHumanParams.model_validate(arguments)
        except ValidationError as exc:
            details = "; ".join(error["msg"] for error in exc.errors())
            raise InvalidToolParamsError(f"Invalid parameters for {TOOL_NAME}: {details}") from exc

        try:
            return await self.broker.ask(params.question)
        except AskError as exc:
            logger.warning("%s failed: %s", TOOL_NAME, exc)
            raise ToolError(str(exc)) from exc
