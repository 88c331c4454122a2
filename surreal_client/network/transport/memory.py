"""In-process transport for offline testing."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Optional, Union

from surreal_client.network.transport.base import BaseTransport, TransportClosed
from surreal_client.protocol import ABNORMAL_CLOSURE

LOGGER = logging.getLogger(__name__)

Responder = Callable[[dict[str, Any]], Optional[dict[str, Any]]]


class MemoryTransport(BaseTransport):
    """Loopback socket: records outgoing frames and replays whatever is fed in."""

    def __init__(
        self,
        url: str = "memory://",
        *,
        responder: Optional[Responder] = None,
        connect_error: Optional[Exception] = None,
    ) -> None:
        self.url = url
        self.sent: list[dict[str, Any]] = []
        self.connected = False
        self.closed_with: Optional[tuple[int, str]] = None
        self._responder = responder
        self._connect_error = connect_error
        self._inbound: asyncio.Queue[Union[str, TransportClosed]] = asyncio.Queue()

    async def connect(self) -> None:
        LOGGER.debug("Memory transport connect() url=%s", self.url)
        if self._connect_error is not None:
            raise self._connect_error
        self.connected = True

    async def send(self, data: str) -> None:
        if not self.connected:
            raise RuntimeError("Memory transport not connected")
        message = json.loads(data)
        self.sent.append(message)
        if self._responder is not None:
            reply = self._responder(message)
            if reply is not None:
                self.feed(reply)

    def feed(self, message: Union[str, dict[str, Any]]) -> None:
        """Queue an inbound frame as if the server had sent it."""

        raw = message if isinstance(message, str) else json.dumps(message)
        self._inbound.put_nowait(raw)

    def drop(self, code: int = ABNORMAL_CLOSURE, reason: str = "connection lost") -> None:
        """Simulate the server side going away."""

        self.connected = False
        self._inbound.put_nowait(TransportClosed(code, reason))

    async def receive(self) -> str:
        item = await self._inbound.get()
        if isinstance(item, TransportClosed):
            raise item
        return item

    async def close(self, code: int, reason: str) -> None:
        LOGGER.debug("Memory transport close() code=%s", code)
        self.closed_with = (code, reason)
        if self.connected:
            self.connected = False
            self._inbound.put_nowait(TransportClosed(code, reason))
