from __future__ import annotations

from typing import Iterable, Iterator

from toolchat.errors import EmptyHistory
from toolchat.models import Message


class ConversationStore:
    """Append-only, ordered message history for one conversation.

    Entries are never removed, replaced or reordered. ``snapshot()`` hands out
    an immutable tuple, and messages themselves are frozen models.
    """

    def __init__(self, system_prompt: str | None = None) -> None:
        self._messages: list[Message] = []
        if system_prompt:
            self._messages.append(Message.system(system_prompt))

    def append(self, message: Message) -> None:
        if not isinstance(message, Message):
            raise TypeError(f"Expected Message, got {type(message).__name__}")
        self._messages.append(message)

    def extend(self, messages: Iterable[Message]) -> None:
        """Append a batch in one step: either every message lands or none does."""
        batch = list(messages)
        for msg in batch:
            if not isinstance(msg, Message):
                raise TypeError(f"Expected Message, got {type(msg).__name__}")
        self._messages.extend(batch)

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def last(self) -> Message:
        if not self._messages:
            raise EmptyHistory("Conversation has no messages")
        return self._messages[-1]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.snapshot())
