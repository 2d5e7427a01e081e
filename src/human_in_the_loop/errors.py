"""Error taxonomy shared by the transports, the broker and the tool adapter."""

from __future__ import annotations

from enum import Enum


class TransportErrorKind(str, Enum):
    DISCONNECTED = "disconnected"
    RATE_LIMITED = "rate_limited"
    FORBIDDEN = "forbidden"
    UNKNOWN = "unknown"


class TransportError(Exception):
    """A chat platform call failed. Never retried automatically."""

    def __init__(self, kind: TransportErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class CancelReason(str, Enum):
    TIMEOUT = "timeout"
    SHUTTING_DOWN = "shutting_down"


class DuplicateKeyError(KeyError):
    """A pending request is already registered under this key."""


class AskError(Exception):
    """Base class for every failure ``HumanQueryBroker.ask`` can report."""


class NotReadyError(AskError):
    def __init__(self, platform: str = "chat platform"):
        super().__init__(f"The connection with {platform} is not ready")


class AskTransportError(AskError):
    def __init__(self, error: TransportError):
        super().__init__(f"Failed to reach the human: {error}")
        self.error = error


class AlreadyPendingError(AskError):
    def __init__(self, conversation_id: str):
        super().__init__(
            f"A question is already waiting for an answer in conversation {conversation_id}"
        )
        self.conversation_id = conversation_id


class AskCancelledError(AskError):
    def __init__(self, reason: CancelReason):
        if reason is CancelReason.TIMEOUT:
            message = "The human did not answer in time"
        else:
            message = "The question was cancelled because the chat connection shut down"
        super().__init__(message)
        self.reason = reason
