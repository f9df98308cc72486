from __future__ import annotations

from typing import Any, Sequence

from toolchat.models import Message, ToolDefinition

CHAT_PATH = "/api/chat"


def build_request(
    history: Sequence[Message],
    tools: Sequence[ToolDefinition],
    model: str,
    supports_tools: bool = True,
) -> dict[str, Any]:
    """Assemble a chat request body.

    Streaming is always off. ``tools`` is omitted entirely for models that do
    not support tool calling.
    """
    body: dict[str, Any] = {
        "model": model,
        "messages": [m.to_wire() for m in history],
        "stream": False,
    }
    if supports_tools:
        body["tools"] = [t.to_wire() for t in tools]
    return body


def chat_url(host: str) -> str:
    return host.rstrip("/") + CHAT_PATH
