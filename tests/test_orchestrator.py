"""Tests for the tool-calling loop in orchestrator.py, using a scripted transport."""
from __future__ import annotations

import asyncio
import json

import pytest

from fakes import assistant, call
from toolchat.errors import (
    ConversationStateError,
    ProtocolError,
    ToolRoundLimitExceeded,
    TransportError,
)
from toolchat.interpreter import FailureKind, TransportFailure
from toolchat.models import Role, ToolDefinition
from toolchat.orchestrator import Orchestrator, TurnState
from toolchat.tools import FunctionTool, ToolRegistry


def _chat(transport, registry, **kwargs) -> Orchestrator:
    return Orchestrator(transport, registry, "test-model", **kwargs)


# ---------------------------------------------------------------------------
# Round trips
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_single_tool_round_trip(transport, registry, weather_calls):
    transport.reply(assistant(tool_calls=[call(0, "get_weather", location="Paris")]))
    transport.reply(assistant("It is 18 degrees in Paris."))
    chat = _chat(transport, registry)

    answer = await chat.ask("What's the weather like in Paris?")

    assert answer == "It is 18 degrees in Paris."
    assert weather_calls == [{"location": "Paris", "unit": "celsius"}]
    assert len(transport.requests) == 2

    follow_up = transport.requests[1]["messages"]
    assert [m["role"] for m in follow_up] == ["user", "assistant", "tool"]
    assert follow_up[0]["content"] == "What's the weather like in Paris?"
    assert follow_up[1]["tool_calls"] == [
        {"index": 0, "function": {"name": "get_weather", "arguments": {"location": "Paris"}}},
    ]
    assert json.loads(follow_up[2]["content"]) == {"location": "Paris", "temperature": 18, "unit": "celsius"}

    tool_messages = [m for m in chat.history if m.role is Role.TOOL]
    assert len(tool_messages) == 1
    assert chat.state is TurnState.DONE


@pytest.mark.asyncio
async def test_no_tool_answer_terminates(transport, registry):
    transport.reply(assistant("Hello"))
    chat = _chat(transport, registry)

    assert await chat.ask("Hi") == "Hello"

    assert len(transport.requests) == 1
    assert [m.role for m in chat.history] == [Role.USER, Role.ASSISTANT]
    assert chat.history[-1].content == "Hello"
    assert chat.last_response.total_duration == 1_500_000_000


@pytest.mark.asyncio
async def test_batched_multi_tool_turn(transport, registry, weather_calls):
    transport.reply(assistant(tool_calls=[
        call(1, "get_weather", location="Rome"),
        call(0, "get_weather", location="Paris"),
    ]))
    transport.reply(assistant("Both are mild."))
    chat = _chat(transport, registry)

    await chat.ask("Paris and Rome?")

    assert len(transport.requests) == 2
    assert [c["location"] for c in weather_calls] == ["Paris", "Rome"]
    tool_contents = [json.loads(m["content"]) for m in transport.requests[1]["messages"] if m["role"] == "tool"]
    assert [c["location"] for c in tool_contents] == ["Paris", "Rome"]


@pytest.mark.asyncio
async def test_float_indices_sanitized_before_replay(transport, registry):
    transport.reply(assistant(tool_calls=[
        {"index": 0.0, "function": {"name": "get_weather", "arguments": {"location": "Paris"}, "index": 0.0}},
    ]))
    transport.reply(assistant("ok"))
    chat = _chat(transport, registry)

    await chat.ask("weather?")

    replayed = transport.requests[1]["messages"][1]["tool_calls"][0]
    assert type(replayed["index"]) is int
    assert type(replayed["function"]["index"]) is int


@pytest.mark.asyncio
async def test_unknown_tool_does_not_abort(transport, registry):
    transport.reply(assistant(tool_calls=[call(0, "launch_rockets", target="moon")]))
    transport.reply(assistant("I can't do that."))
    chat = _chat(transport, registry)

    assert await chat.ask("Launch!") == "I can't do that."

    assert len(transport.requests) == 2
    tool_msg = transport.requests[1]["messages"][-1]
    assert tool_msg["role"] == "tool"
    assert json.loads(tool_msg["content"]) == {"error": "Unknown function: launch_rockets"}


@pytest.mark.asyncio
async def test_several_tool_rounds(transport, registry):
    transport.reply(assistant(tool_calls=[call(0, "get_weather", location="Paris")]))
    transport.reply(assistant(tool_calls=[call(0, "get_weather", location="Rome")]))
    transport.reply(assistant("done"))
    chat = _chat(transport, registry)

    await chat.ask("Compare")

    assert len(transport.requests) == 3
    assert [m.role for m in chat.history] == [
        Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT,
    ]


@pytest.mark.asyncio
async def test_system_prompt_leads_every_request(transport, registry):
    transport.reply(assistant("hi"))
    chat = _chat(transport, registry, system_prompt="Be brief.")

    await chat.ask("hello")

    assert transport.requests[0]["messages"][0] == {"role": "system", "content": "Be brief."}


@pytest.mark.asyncio
async def test_tools_not_sent_when_unsupported(transport, registry):
    transport.reply(assistant("hi"))
    chat = _chat(transport, registry, supports_tools=False)

    await chat.ask("hello")

    assert "tools" not in transport.requests[0]
    assert transport.calls[0][0] == "http://localhost:11434/api/chat"
    assert transport.calls[0][2] == "POST"


@pytest.mark.asyncio
async def test_observer_sees_each_call(transport, registry):
    seen = []
    transport.reply(assistant(tool_calls=[call(0, "get_weather", location="Paris")]))
    transport.reply(assistant("ok"))
    chat = _chat(transport, registry, on_tool_call=lambda c, r: seen.append((c.function_name, r)))

    await chat.ask("weather")

    assert seen[0][0] == "get_weather"
    assert json.loads(seen[0][1])["location"] == "Paris"


@pytest.mark.asyncio
async def test_extra_argument_from_model_still_runs_tool(transport, registry, weather_calls):
    transport.reply(assistant(tool_calls=[call(0, "get_weather", location="Paris", country="France")]))
    transport.reply(assistant("18 degrees."))
    chat = _chat(transport, registry)

    await chat.ask("Weather in Paris, France?")

    assert weather_calls == [{"location": "Paris", "unit": "celsius"}]
    tool_msg = transport.requests[1]["messages"][-1]
    assert "error" not in json.loads(tool_msg["content"])
    # the stored assistant message keeps the arguments exactly as the model sent them
    assert chat.history[1].tool_calls[0].arguments == {"location": "Paris", "country": "France"}


# ---------------------------------------------------------------------------
# Failures leave history untouched
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_http_500_leaves_history_untouched(transport, registry):
    transport.reply(assistant("first"))
    transport.reply({"error": "internal"}, status=500)
    chat = _chat(transport, registry)
    await chat.ask("one")
    before = chat.history

    with pytest.raises(ProtocolError) as exc:
        await chat.ask("two")

    assert exc.value.failure.kind is FailureKind.HTTP_STATUS
    assert chat.history == before
    assert chat.state is TurnState.FAILED


@pytest.mark.asyncio
async def test_unparsable_body_on_follow_up(transport, registry):
    transport.reply(assistant(tool_calls=[call(0, "get_weather", location="Paris")]))
    transport.reply_raw(b"not json")
    chat = _chat(transport, registry)

    with pytest.raises(ProtocolError) as exc:
        await chat.ask("weather?")

    assert exc.value.failure.kind is FailureKind.MALFORMED_BODY
    # the completed tool batch stays; nothing from the failed follow-up is added
    assert [m.role for m in chat.history] == [Role.USER, Role.ASSISTANT, Role.TOOL]


@pytest.mark.asyncio
async def test_transport_error_is_surfaced(transport, registry):
    transport.fail(TransportError(TransportFailure(kind=FailureKind.CONNECTION, detail="refused")))
    chat = _chat(transport, registry)

    with pytest.raises(TransportError):
        await chat.ask("hello")

    assert chat.history == ()
    assert chat.state is TurnState.FAILED


@pytest.mark.asyncio
async def test_timeout_fails_without_retry(transport, registry):
    transport.hang()
    chat = _chat(transport, registry, timeout=0.05)

    with pytest.raises(TransportError) as exc:
        await chat.ask("hello")

    assert exc.value.failure.kind is FailureKind.TIMEOUT
    assert len(transport.requests) == 1
    assert chat.history == ()


@pytest.mark.asyncio
async def test_new_message_after_failure_starts_fresh(transport, registry):
    transport.reply({}, status=503)
    transport.reply(assistant("back"))
    chat = _chat(transport, registry)

    with pytest.raises(ProtocolError):
        await chat.ask("first")
    assert await chat.ask("second") == "back"

    assert [m.content for m in chat.history] == ["second", "back"]
    assert chat.state is TurnState.DONE


@pytest.mark.asyncio
async def test_round_limit(transport, registry):
    for _ in range(2):
        transport.reply(assistant(tool_calls=[call(0, "get_weather", location="Paris")]))
    chat = _chat(transport, registry, max_tool_rounds=2)

    with pytest.raises(ToolRoundLimitExceeded):
        await chat.ask("loop forever")

    assert len(transport.requests) == 2
    assert chat.state is TurnState.FAILED
    assert len(chat.history) == 5


# ---------------------------------------------------------------------------
# Concurrency and cancellation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_second_ask_while_in_flight_is_rejected(transport, registry):
    transport.hang()
    transport.reply(assistant("first done"))
    chat = _chat(transport, registry)

    task = asyncio.create_task(chat.ask("first"))
    await transport.entered.wait()
    assert chat.state is TurnState.REQUEST_IN_FLIGHT

    with pytest.raises(ConversationStateError):
        await chat.ask("second")

    transport.release.set()
    assert await task == "first done"
    assert len(transport.requests) == 1


@pytest.mark.asyncio
async def test_cancel_while_in_flight_leaves_history(transport, registry):
    transport.hang()
    chat = _chat(transport, registry)

    task = asyncio.create_task(chat.ask("hello"))
    await transport.entered.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert chat.history == ()
    assert chat.state is TurnState.FAILED


@pytest.mark.asyncio
async def test_cancel_during_async_tools_commits_nothing(transport):
    started = asyncio.Event()

    async def slow_lookup(q: str) -> str:
        started.set()
        await asyncio.Event().wait()
        return q

    registry = ToolRegistry([
        FunctionTool(ToolDefinition(name="lookup", description="slow"), slow_lookup),
    ])
    transport.reply(assistant(tool_calls=[call(0, "lookup", q="a"), call(1, "lookup", q="b")]))
    chat = _chat(transport, registry)

    task = asyncio.create_task(chat.ask("look things up"))
    await started.wait()
    assert chat.state is TurnState.TOOL_CALLS_PENDING
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert chat.history == ()
    assert len(transport.requests) == 1


@pytest.mark.asyncio
async def test_async_tools_finish_before_follow_up(transport):
    order = []

    async def lookup(q: str) -> str:
        await asyncio.sleep(0)
        order.append(q)
        return q.upper()

    registry = ToolRegistry([
        FunctionTool(ToolDefinition(name="lookup", description="async"), lookup),
    ])
    transport.reply(assistant(tool_calls=[call(0, "lookup", q="a"), call(1, "lookup", q="b")]))
    transport.reply(assistant("done"))
    chat = _chat(transport, registry)

    await chat.ask("go")

    assert order == ["a", "b"]
    tool_contents = [m["content"] for m in transport.requests[1]["messages"] if m["role"] == "tool"]
    assert tool_contents == ["A", "B"]


def test_max_tool_rounds_must_be_positive(transport, registry):
    with pytest.raises(ValueError):
        _chat(transport, registry, max_tool_rounds=0)
