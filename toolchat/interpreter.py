"""Classify a raw chat response into the next step of the loop.

``interpret`` never raises and never touches conversation state. Every
failure mode comes back as a ``ProtocolFailure`` value for the orchestrator
to act on.
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict

from toolchat.errors import SchemaError
from toolchat.models import ChatResponse, Message, Role, ToolCall, parse_model
from toolchat.sanitizer import sanitize


class FailureKind(str, Enum):
    HTTP_STATUS = "http_status"
    MALFORMED_BODY = "malformed_body"
    MISSING_FIELDS = "missing_fields"
    TIMEOUT = "timeout"
    CONNECTION = "connection"


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

class FinalAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: Literal["final_answer"] = "final_answer"
    message: Message
    response: ChatResponse

    @property
    def text(self) -> str:
        return self.message.content or ""


class ToolCallsRequested(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: Literal["tool_calls"] = "tool_calls"
    message: Message  # already sanitized
    calls: tuple[ToolCall, ...]
    response: ChatResponse


class ProtocolFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: Literal["protocol_failure"] = "protocol_failure"
    kind: FailureKind
    detail: str = ""
    status_code: int | None = None


class TransportFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: Literal["transport_failure"] = "transport_failure"
    kind: FailureKind
    detail: str = ""


TurnOutcome = Union[FinalAnswer, ToolCallsRequested, ProtocolFailure]


# ---------------------------------------------------------------------------
# Interpretation
# ---------------------------------------------------------------------------

def interpret(status: int, body: bytes | str | Mapping[str, Any]) -> TurnOutcome:
    """Turn an HTTP status and response body into a ``TurnOutcome``.

    Assistant messages carrying tool calls are sanitized before validation,
    so float-typed indices never reach the typed model.
    """
    if not 200 <= status < 300:
        return ProtocolFailure(
            kind=FailureKind.HTTP_STATUS,
            detail=f"HTTP {status}: {_preview(body)}",
            status_code=status,
        )

    data = body
    if isinstance(body, (bytes, str)):
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return ProtocolFailure(
                kind=FailureKind.MALFORMED_BODY,
                detail=f"Response is not valid JSON: {e}",
                status_code=status,
            )
    if not isinstance(data, Mapping):
        return ProtocolFailure(
            kind=FailureKind.MALFORMED_BODY,
            detail=f"Expected a JSON object, got {type(data).__name__}",
            status_code=status,
        )
    if "error" in data and "message" not in data:
        return ProtocolFailure(
            kind=FailureKind.MISSING_FIELDS,
            detail=f"Endpoint reported an error: {data['error']}",
            status_code=status,
        )

    raw_message = data.get("message")
    if isinstance(raw_message, Mapping) and raw_message.get("tool_calls"):
        data = {**data, "message": sanitize(raw_message)}

    try:
        response = parse_model(ChatResponse, data)
    except SchemaError as e:
        return ProtocolFailure(kind=FailureKind.MISSING_FIELDS, detail=str(e), status_code=status)

    message = response.message
    if message.role is not Role.ASSISTANT:
        return ProtocolFailure(
            kind=FailureKind.MISSING_FIELDS,
            detail=f"Expected an assistant message, got role={message.role.value}",
            status_code=status,
        )

    if not message.tool_calls:
        return FinalAnswer(message=message, response=response)

    calls = tuple(sorted(message.tool_calls, key=lambda tc: tc.index))
    return ToolCallsRequested(message=message, calls=calls, response=response)


def _preview(body: bytes | str | Mapping[str, Any], limit: int = 200) -> str:
    if isinstance(body, bytes):
        text = body.decode("utf-8", errors="replace")
    elif isinstance(body, str):
        text = body
    else:
        text = json.dumps(body, default=str)
    text = text.strip()
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text or "(empty body)"
