from __future__ import annotations

import json
from enum import Enum
from typing import Any, Iterable, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    ValidationError,
    field_validator,
    model_validator,
)

from toolchat.errors import SchemaError

M = TypeVar("M", bound=BaseModel)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


class FunctionCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    index: StrictInt | None = Field(default=None, ge=0)

    @field_validator("arguments", mode="before")
    @classmethod
    def _decode_arguments(cls, value: Any) -> Any:
        # Some servers send arguments as a JSON string instead of an object
        if isinstance(value, str):
            try:
                return json.loads(value) if value.strip() else {}
            except json.JSONDecodeError as e:
                raise ValueError(f"arguments is not valid JSON: {e}") from e
        if value is None:
            return {}
        return value

    def to_wire(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "arguments": self.arguments}
        if self.index is not None:
            d["index"] = self.index
        return d


class ToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: StrictInt = Field(ge=0)
    function: FunctionCall

    @property
    def function_name(self) -> str:
        return self.function.name

    @property
    def arguments(self) -> dict[str, Any]:
        return self.function.arguments

    def to_wire(self) -> dict[str, Any]:
        return {"index": self.index, "function": self.function.to_wire()}


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    tool_name: str | None = None  # for role="tool": which function produced this result

    @field_validator("tool_calls", mode="before")
    @classmethod
    def _fill_missing_indices(cls, value: Any) -> Any:
        """Ollama puts the index on the function object; older servers omit it.

        The top-level index falls back to ``function.index`` and then to the
        call's position in the sequence.
        """
        if value is None:
            return ()
        if not isinstance(value, (list, tuple)):
            return value
        filled = []
        for position, tc in enumerate(value):
            if isinstance(tc, dict) and tc.get("index") is None:
                fn = tc.get("function")
                fallback = fn.get("index") if isinstance(fn, dict) else None
                tc = {**tc, "index": fallback if fallback is not None else position}
            filled.append(tc)
        return filled

    @model_validator(mode="after")
    def _tool_calls_only_on_assistant(self) -> Message:
        if self.tool_calls and self.role is not Role.ASSISTANT:
            raise ValueError(f"tool_calls are only allowed on assistant messages, got role={self.role.value}")
        return self

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def tool_result(cls, content: str, tool_name: str | None = None) -> Message:
        return cls(role=Role.TOOL, content=content, tool_name=tool_name)

    def to_wire(self) -> dict[str, Any]:
        """Wire form: absent fields are omitted rather than sent as null."""
        d: dict[str, Any] = {"role": self.role.value}
        if self.content is not None:
            d["content"] = self.content
        if self.tool_calls:
            d["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.tool_name is not None:
            d["tool_name"] = self.tool_name
        return d


class ToolDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str
    parameter_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    @property
    def required(self) -> list[str]:
        return list(self.parameter_schema.get("required", []))

    @property
    def properties(self) -> dict[str, Any]:
        return dict(self.parameter_schema.get("properties", {}))

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameter_schema,
            },
        }


class ChatResponse(BaseModel):
    """Body of a non-streaming chat endpoint response."""

    model: str = ""
    message: Message
    done: bool = True
    done_reason: str | None = None
    total_duration: int | None = None  # nanoseconds


def parse_model(cls: type[M], data: Any) -> M:
    """Validate ``data`` into ``cls``, converting pydantic errors to SchemaError."""
    try:
        return cls.model_validate(data)
    except ValidationError as e:
        locations = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise SchemaError(f"Invalid {cls.__name__}: {_summarize(e.errors())}", locations) from e


def _summarize(errors: Iterable[dict[str, Any]]) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err["loc"]) or "<root>"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)
