from __future__ import annotations

import logging
from typing import Mapping

import httpx

from toolchat.errors import TransportError
from toolchat.interpreter import FailureKind, TransportFailure
from toolchat.transports.base import Transport, TransportResponse

logger = logging.getLogger(__name__)


class HttpxTransport(Transport):
    """Async HTTP transport backed by ``httpx.AsyncClient``.

    Pass ``client`` to reuse a configured client (tests hand in one built on
    ``httpx.MockTransport``). A client created here is closed by ``aclose``.
    """

    def __init__(self, timeout: float = 120.0, client: httpx.AsyncClient | None = None) -> None:
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(
        self,
        url: str,
        headers: Mapping[str, str],
        method: str,
        body: bytes,
    ) -> TransportResponse:
        logger.debug("%s %s (%d bytes)", method, url, len(body))
        try:
            response = await self._client.request(method, url, headers=dict(headers), content=body)
        except httpx.TimeoutException as e:
            raise TransportError(
                TransportFailure(kind=FailureKind.TIMEOUT, detail=f"{method} {url} timed out: {e}")
            ) from e
        except httpx.TransportError as e:
            raise TransportError(
                TransportFailure(kind=FailureKind.CONNECTION, detail=f"{method} {url} failed: {e}")
            ) from e
        logger.debug("%s %s -> HTTP %d", method, url, response.status_code)
        return TransportResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=response.content,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
