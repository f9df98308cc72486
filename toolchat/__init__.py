"""toolchat: tool-calling chat loop for Ollama-style chat endpoints."""
from __future__ import annotations

from toolchat.conversation import ConversationStore
from toolchat.errors import (
    ConversationStateError,
    EmptyHistory,
    ProtocolError,
    SchemaError,
    ToolChatError,
    ToolRoundLimitExceeded,
    TransportError,
    TurnFailed,
)
from toolchat.models import FunctionCall, Message, Role, ToolCall, ToolDefinition
from toolchat.orchestrator import Orchestrator, TurnState
from toolchat.tools import FunctionTool, Tool, ToolRegistry

__all__ = [
    "ConversationStateError",
    "ConversationStore",
    "EmptyHistory",
    "FunctionCall",
    "FunctionTool",
    "Message",
    "Orchestrator",
    "ProtocolError",
    "Role",
    "SchemaError",
    "Tool",
    "ToolCall",
    "ToolChatError",
    "ToolDefinition",
    "ToolRegistry",
    "ToolRoundLimitExceeded",
    "TransportError",
    "TurnFailed",
    "TurnState",
]
