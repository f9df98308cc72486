from __future__ import annotations

import inspect
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from toolchat.models import ToolDefinition

logger = logging.getLogger(__name__)

ToolFunction = Callable[..., Any]


# ---------------------------------------------------------------------------
# Tool capability
# ---------------------------------------------------------------------------

class Tool(ABC):
    """A named capability the model can call."""

    definition: ToolDefinition

    @property
    def name(self) -> str:
        return self.definition.name

    @abstractmethod
    def run(self, arguments: dict[str, Any]) -> Any | Awaitable[Any]:
        """Execute with already-normalized arguments. May return an awaitable."""
        ...


class FunctionTool(Tool):
    """Wrap a plain or ``async`` function; arguments are passed as keywords."""

    def __init__(self, definition: ToolDefinition, func: ToolFunction) -> None:
        self.definition = definition
        self.func = func

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.func)

    def run(self, arguments: dict[str, Any]) -> Any | Awaitable[Any]:
        return self.func(**_accepted(self.func, arguments))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ToolRegistry:
    """Name-keyed tool catalog. Advertises definitions and executes calls.

    Failures never propagate out of ``execute``/``execute_async``: an unknown
    name or a tool that raises becomes a JSON error payload, which is fed back
    to the model as the tool result so it can recover on the next turn.
    """

    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        self.stats: dict[str, int] = {
            "calls": 0,
            "errors": 0,
            "unknown": 0,
        }
        for t in tools or []:
            self.register(t)

    def register(self, tool: Tool | ToolDefinition, func: ToolFunction | None = None) -> Tool:
        if isinstance(tool, ToolDefinition):
            if func is None:
                raise TypeError(f"register({tool.name!r}) needs a callable")
            tool = FunctionTool(tool, func)
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        return tool

    def tool(
        self,
        name: str | None = None,
        description: str = "",
        parameters: dict[str, Any] | None = None,
    ) -> Callable[[ToolFunction], ToolFunction]:
        """Decorator form of ``register``. Description defaults to the docstring."""

        def decorator(func: ToolFunction) -> ToolFunction:
            definition = ToolDefinition(
                name=name or func.__name__,
                description=description or inspect.getdoc(func) or "",
                parameter_schema=parameters or {"type": "object", "properties": {}, "required": []},
            )
            self.register(definition, func)
            return func

        return decorator

    def definitions(self) -> list[ToolDefinition]:
        """Definitions in registration order."""
        return [t.definition for t in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def execute(self, name: str, arguments: dict[str, Any]) -> str:
        """Run a synchronous tool and return its serialized result."""
        tool, prepared, error = self._prepare(name, arguments)
        if error is not None:
            return error
        assert tool is not None
        try:
            result = tool.run(prepared)
        except Exception as e:
            return self._failed(name, e)
        if inspect.isawaitable(result):
            _discard(result)
            self.stats["errors"] += 1
            logger.error("Tool '%s' is async and cannot run in execute(); use execute_async()", name)
            return _error_payload(f"{name} failed: tool requires async execution")
        return _serialize(result)

    async def execute_async(self, name: str, arguments: dict[str, Any]) -> str:
        """Run a tool, awaiting it if it is asynchronous."""
        tool, prepared, error = self._prepare(name, arguments)
        if error is not None:
            return error
        assert tool is not None
        try:
            result = tool.run(prepared)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            return self._failed(name, e)
        return _serialize(result)

    def _prepare(
        self, name: str, arguments: dict[str, Any]
    ) -> tuple[Tool | None, dict[str, Any], str | None]:
        self.stats["calls"] += 1
        tool = self._tools.get(name)
        if tool is None:
            self.stats["unknown"] += 1
            logger.warning("Model called unknown tool '%s'", name)
            return None, {}, _error_payload(f"Unknown function: {name}")
        return tool, normalize_arguments(tool.definition, arguments), None

    def _failed(self, name: str, exc: Exception) -> str:
        self.stats["errors"] += 1
        logger.exception("Tool '%s' raised", name)
        return _error_payload(f"{name} failed: {exc}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_arguments(definition: ToolDefinition, arguments: dict[str, Any]) -> dict[str, Any]:
    """Fill schema defaults for missing optional fields.

    Validation is advisory: a missing required field is logged and left for
    the tool to report. Unknown fields are logged and dropped when the schema
    declares its properties.
    """
    props = definition.properties
    result = dict(arguments or {})

    for key, spec in props.items():
        if key not in result and isinstance(spec, dict) and "default" in spec:
            result[key] = spec["default"]

    missing = [k for k in definition.required if k not in result]
    if missing:
        logger.warning("Tool '%s' called without required argument(s): %s", definition.name, missing)
    if props:
        unknown = [k for k in result if k not in props]
        if unknown:
            logger.warning("Tool '%s' called with unknown argument(s): %s", definition.name, unknown)
            for k in unknown:
                del result[k]
    return result


def _serialize(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


def _error_payload(message: str) -> str:
    return json.dumps({"error": message})


def _discard(awaitable: Any) -> None:
    close = getattr(awaitable, "close", None)
    if close is not None:
        close()


def _accepted(func: ToolFunction, arguments: dict[str, Any]) -> dict[str, Any]:
    """Keep only the keyword arguments ``func`` can take."""
    try:
        params = inspect.signature(func).parameters
    except (TypeError, ValueError):
        return arguments
    if any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values()):
        return arguments
    extra = [k for k in arguments if k not in params]
    if not extra:
        return arguments
    logger.warning("Dropping argument(s) %s not accepted by %s", extra, getattr(func, "__name__", func))
    return {k: v for k, v in arguments.items() if k in params}
