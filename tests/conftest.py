from __future__ import annotations

import pytest

from fakes import WEATHER_SCHEMA, FakeTransport
from toolchat.models import ToolDefinition
from toolchat.tools import ToolRegistry


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def weather_calls():
    return []


@pytest.fixture
def registry(weather_calls):
    reg = ToolRegistry()

    def get_weather(location: str, unit: str = "celsius") -> dict:
        weather_calls.append({"location": location, "unit": unit})
        return {"location": location, "temperature": 18, "unit": unit}

    reg.register(
        ToolDefinition(name="get_weather", description="Current weather", parameter_schema=WEATHER_SCHEMA),
        get_weather,
    )
    return reg
