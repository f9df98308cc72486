from __future__ import annotations

import ast
import operator
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from toolchat.models import ToolDefinition
from toolchat.tools import FunctionTool, ToolRegistry

# ---------------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------------

WEATHER = ToolDefinition(
    name="get_weather",
    description="Get the current weather for a city.",
    parameter_schema={
        "type": "object",
        "properties": {
            "location": {"type": "string", "description": "City name, e.g. 'Paris'"},
            "unit": {
                "type": "string",
                "enum": ["celsius", "fahrenheit"],
                "description": "Temperature unit",
                "default": "celsius",
            },
        },
        "required": ["location"],
    },
)

CURRENT_TIME = ToolDefinition(
    name="get_current_time",
    description="Get the current date and time in an IANA timezone.",
    parameter_schema={
        "type": "object",
        "properties": {
            "timezone": {
                "type": "string",
                "description": "IANA timezone name, e.g. 'Europe/Paris'",
                "default": "UTC",
            },
        },
        "required": [],
    },
)

CALCULATE = ToolDefinition(
    name="calculate",
    description="Evaluate an arithmetic expression using + - * / ** % and parentheses.",
    parameter_schema={
        "type": "object",
        "properties": {
            "expression": {"type": "string", "description": "Expression, e.g. '(2 + 3) * 4'"},
        },
        "required": ["expression"],
    },
)


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------

# Canned readings; there is no live weather backend behind the demo.
_WEATHER_TABLE: dict[str, tuple[float, str]] = {
    "paris": (18.0, "partly cloudy"),
    "london": (14.0, "light rain"),
    "new york": (22.0, "sunny"),
    "tokyo": (25.0, "humid"),
    "sydney": (20.0, "clear"),
}


def get_weather(location: str, unit: str = "celsius") -> dict[str, Any]:
    key = location.strip().lower()
    if key not in _WEATHER_TABLE:
        return {"location": location, "error": f"No weather data for '{location}'"}
    temp_c, conditions = _WEATHER_TABLE[key]
    if unit == "fahrenheit":
        temperature = round(temp_c * 9 / 5 + 32, 1)
    else:
        unit = "celsius"
        temperature = temp_c
    return {
        "location": location,
        "temperature": temperature,
        "unit": unit,
        "conditions": conditions,
    }


def get_current_time(timezone: str = "UTC") -> dict[str, str]:
    try:
        tz = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return {"error": f"Unknown timezone '{timezone}'"}
    return {"timezone": timezone, "datetime": datetime.now(tz).isoformat(timespec="seconds")}


_MAX_EXPONENT = 100
_MAX_POW_BASE = 10**6
_MAX_MAGNITUDE = 10**100

_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


def calculate(expression: str) -> dict[str, Any]:
    tree = ast.parse(expression, mode="eval")
    return {"expression": expression, "result": _eval_node(tree.body)}


def _eval_node(node: ast.AST) -> float | int:
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) \
            and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _OPERATORS:
        left, right = _eval_node(node.left), _eval_node(node.right)
        if isinstance(node.op, ast.Pow) and (abs(right) > _MAX_EXPONENT or abs(left) > _MAX_POW_BASE):
            raise ValueError("power too large")
        return _bounded(_OPERATORS[type(node.op)](left, right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _OPERATORS:
        return _OPERATORS[type(node.op)](_eval_node(node.operand))
    raise ValueError(f"Unsupported expression element: {type(node).__name__}")


def _bounded(value: float | int) -> float | int:
    if abs(value) > _MAX_MAGNITUDE:
        raise ValueError("result too large")
    return value


def demo_registry() -> ToolRegistry:
    """Registry with the weather, time and calculator tools, in that order."""
    return ToolRegistry([
        FunctionTool(WEATHER, get_weather),
        FunctionTool(CURRENT_TIME, get_current_time),
        FunctionTool(CALCULATE, calculate),
    ])
