from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field


class TransportResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: int
    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes = b""


class Transport(ABC):
    """Performs one HTTP exchange on behalf of the orchestrator.

    Implementations raise ``toolchat.errors.TransportError`` for timeouts and
    connection-level problems. Any HTTP status, including 4xx/5xx, is a
    normal ``TransportResponse``.
    """

    @abstractmethod
    async def send(
        self,
        url: str,
        headers: Mapping[str, str],
        method: str,
        body: bytes,
    ) -> TransportResponse:
        ...

    async def aclose(self) -> None:
        """Release any pooled connections. Default: nothing to release."""

    async def __aenter__(self) -> Transport:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
