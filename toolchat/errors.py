"""Error hierarchy for toolchat.

Only turn-fatal problems are raised to callers. Unknown tools and numeric
drift in index fields are absorbed where they happen and never show up here.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from toolchat.interpreter import ProtocolFailure, TransportFailure


class ToolChatError(Exception):
    """Base for all toolchat errors."""


class SchemaError(ToolChatError):
    """A payload is missing a required field or has the wrong type.

    Attributes:
        locations: dotted paths of the offending fields, e.g. ``message.role``.
    """

    def __init__(self, message: str, locations: list[str] | None = None) -> None:
        self.locations = locations or []
        super().__init__(message)


class EmptyHistory(ToolChatError):
    """The conversation has no messages yet."""


class ConversationStateError(ToolChatError):
    """An operation is not legal in the orchestrator's current state."""


class TurnFailed(ToolChatError):
    """A turn ended in a transport or protocol failure.

    The conversation history is exactly what it was before the turn began.
    """

    category = "failure"

    def __init__(self, failure: TransportFailure | ProtocolFailure) -> None:
        self.failure = failure
        super().__init__(f"{self.category} ({failure.kind.value}): {failure.detail}")


class TransportError(TurnFailed):
    """Timeout or connection-level error while talking to the endpoint."""

    category = "transport failure"


class ProtocolError(TurnFailed):
    """Non-2xx status, unparsable body, or a response missing required fields."""

    category = "protocol failure"


class ToolRoundLimitExceeded(ToolChatError):
    """The model kept requesting tools past the configured round limit."""

    def __init__(self, rounds: int) -> None:
        self.rounds = rounds
        super().__init__(f"Model requested tools for more than {rounds} round(s)")
