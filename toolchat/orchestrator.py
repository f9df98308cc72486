from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

from toolchat.conversation import ConversationStore
from toolchat.errors import (
    ConversationStateError,
    ProtocolError,
    ToolRoundLimitExceeded,
    TransportError,
)
from toolchat.interpreter import (
    FailureKind,
    FinalAnswer,
    ProtocolFailure,
    TransportFailure,
    TurnOutcome,
    interpret,
)
from toolchat.models import ChatResponse, Message, ToolCall
from toolchat.request import build_request, chat_url
from toolchat.tools import ToolRegistry
from toolchat.transports.base import Transport

logger = logging.getLogger(__name__)

DEFAULT_HOST = "http://localhost:11434"
MAX_TOOL_ROUNDS = 10

ToolCallObserver = Callable[[ToolCall, str], None]


class TurnState(str, Enum):
    IDLE = "idle"
    REQUEST_IN_FLIGHT = "request_in_flight"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: dict[TurnState, frozenset[TurnState]] = {
    TurnState.IDLE: frozenset({TurnState.REQUEST_IN_FLIGHT}),
    TurnState.REQUEST_IN_FLIGHT: frozenset(
        {TurnState.TOOL_CALLS_PENDING, TurnState.DONE, TurnState.FAILED}
    ),
    TurnState.TOOL_CALLS_PENDING: frozenset({TurnState.REQUEST_IN_FLIGHT, TurnState.FAILED}),
    TurnState.DONE: frozenset({TurnState.IDLE}),
    TurnState.FAILED: frozenset({TurnState.IDLE}),
}


class Orchestrator:
    """Drives one conversation through the tool-calling loop.

    Each ``ask`` sends the user message, executes whatever tools the model
    requests, feeds the results back, and repeats until the model answers.
    Messages produced by a turn are staged and only committed to the store
    once that turn has completed, so a failed or cancelled turn leaves the
    history exactly as it was.
    """

    def __init__(
        self,
        transport: Transport,
        registry: ToolRegistry,
        model: str,
        *,
        host: str = DEFAULT_HOST,
        system_prompt: str | None = None,
        store: ConversationStore | None = None,
        supports_tools: bool = True,
        timeout: float = 120.0,
        max_tool_rounds: int = MAX_TOOL_ROUNDS,
        headers: Mapping[str, str] | None = None,
        on_tool_call: ToolCallObserver | None = None,
    ) -> None:
        if max_tool_rounds < 1:
            raise ValueError("max_tool_rounds must be at least 1")
        self.transport = transport
        self.registry = registry
        self.model = model
        self.url = chat_url(host)
        self.supports_tools = supports_tools
        self.timeout = timeout
        self.max_tool_rounds = max_tool_rounds
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.on_tool_call = on_tool_call
        self.last_response: ChatResponse | None = None
        self._store = store if store is not None else ConversationStore(system_prompt)
        self._state = TurnState.IDLE

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def history(self) -> tuple[Message, ...]:
        return self._store.snapshot()

    async def ask(self, text: str) -> str:
        """Run one user turn to completion and return the assistant's answer.

        Raises:
            ConversationStateError: a turn is already running.
            TransportError: timeout or connection failure.
            ProtocolError: bad status, unparsable or incomplete response.
            ToolRoundLimitExceeded: the model never stopped calling tools.
        """
        if self._state in (TurnState.DONE, TurnState.FAILED):
            self._transition(TurnState.IDLE)
        if self._state is not TurnState.IDLE:
            raise ConversationStateError(
                f"Cannot start a new turn while the conversation is {self._state.value}"
            )

        staged: list[Message] = [Message.user(text)]
        rounds = 0
        try:
            while True:
                outcome = await self._send(staged)

                if isinstance(outcome, ProtocolFailure):
                    logger.warning("Protocol failure: %s", outcome.detail)
                    raise ProtocolError(outcome)

                if isinstance(outcome, FinalAnswer):
                    self._store.extend([*staged, outcome.message])
                    self.last_response = outcome.response
                    self._transition(TurnState.DONE)
                    return outcome.text

                self._transition(TurnState.TOOL_CALLS_PENDING)
                rounds += 1
                results = await self._run_tools(outcome.calls)
                # The whole batch lands at once, then exactly one follow-up request
                self._store.extend([*staged, outcome.message, *results])
                staged = []

                if rounds >= self.max_tool_rounds:
                    raise ToolRoundLimitExceeded(rounds)
        except BaseException:
            if self._state in (TurnState.REQUEST_IN_FLIGHT, TurnState.TOOL_CALLS_PENDING):
                self._transition(TurnState.FAILED)
            raise

    async def _send(self, staged: Sequence[Message]) -> TurnOutcome:
        self._transition(TurnState.REQUEST_IN_FLIGHT)
        body = build_request(
            [*self._store.snapshot(), *staged],
            self.registry.definitions(),
            self.model,
            supports_tools=self.supports_tools,
        )
        payload = json.dumps(body).encode("utf-8")
        logger.debug("Sending %d message(s) to %s", len(body["messages"]), self.url)
        try:
            async with asyncio.timeout(self.timeout):
                response = await self.transport.send(self.url, self.headers, "POST", payload)
        except TimeoutError as e:
            raise TransportError(
                TransportFailure(
                    kind=FailureKind.TIMEOUT,
                    detail=f"No response from {self.url} within {self.timeout}s",
                )
            ) from e
        return interpret(response.status, response.body)

    async def _run_tools(self, calls: Sequence[ToolCall]) -> list[Message]:
        results: list[Message] = []
        for call in sorted(calls, key=lambda c: c.index):
            logger.info("Calling tool %s(%s)", call.function_name, _fmt_args(call.arguments))
            result = await self.registry.execute_async(call.function_name, call.arguments)
            if self.on_tool_call is not None:
                self.on_tool_call(call, result)
            results.append(Message.tool_result(result, tool_name=call.function_name))
        return results

    def _transition(self, target: TurnState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise ConversationStateError(
                f"Illegal transition {self._state.value} -> {target.value}"
            )
        logger.debug("State %s -> %s", self._state.value, target.value)
        self._state = target


def _fmt_args(args: dict[str, Any]) -> str:
    parts = []
    for k, v in args.items():
        sv = str(v)
        if len(sv) > 40:
            sv = sv[:37] + "..."
        parts.append(f"{k}={sv!r}")
    return ", ".join(parts)
