"""Normalize index fields of assistant messages before they are stored.

Some encoders round-trip whole numbers as floats (``0`` comes back as
``0.0``). The chat endpoint rejects or misreads such indices when the message
is replayed as history, so every tool-call index is rewritten to an ``int``
between "received from the wire" and "stored in history".
"""
from __future__ import annotations

import logging
from typing import Any, Mapping

logger = logging.getLogger(__name__)


def sanitize(message: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of a raw message with whole-number float indices made ints.

    Only ``tool_calls[*].index`` and ``tool_calls[*].function.index`` are
    touched. Non-whole floats are left alone so that validation reports them.
    The input is never mutated and ``sanitize(sanitize(m)) == sanitize(m)``.
    """
    tool_calls = message.get("tool_calls")
    if not tool_calls or not isinstance(tool_calls, (list, tuple)):
        return dict(message)

    cleaned = []
    for tc in tool_calls:
        if not isinstance(tc, Mapping):
            cleaned.append(tc)
            continue
        tc = _fix_index(tc)
        fn = tc.get("function")
        if isinstance(fn, Mapping):
            tc = {**tc, "function": _fix_index(fn)}
        cleaned.append(tc)
    return {**message, "tool_calls": cleaned}


def _fix_index(obj: Mapping[str, Any]) -> dict[str, Any]:
    value = obj.get("index")
    fixed = _as_int(value)
    if fixed is value:
        return dict(obj)
    logger.debug("Coerced tool-call index %r to %d", value, fixed)
    return {**obj, "index": fixed}


def _as_int(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value
