from __future__ import annotations

from toolchat.transports.base import Transport, TransportResponse
from toolchat.transports.httpx_transport import HttpxTransport

__all__ = ["HttpxTransport", "Transport", "TransportResponse"]
