"""WebSocket transport implementation."""

from __future__ import annotations

import logging
from typing import Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from surreal_client.config import ClientSettings
from surreal_client.network.transport.base import BaseTransport, TransportClosed
from surreal_client.protocol import ABNORMAL_CLOSURE

LOGGER = logging.getLogger(__name__)


class WebSocketTransport(BaseTransport):
    """WebSocket-based RPC transport."""

    def __init__(self, url: str, settings: ClientSettings) -> None:
        self._url = url
        self._settings = settings
        self._ws: Optional[ClientConnection] = None

    async def connect(self) -> None:
        LOGGER.info("Connecting to RPC WebSocket at %s", self._url)
        self._ws = await connect(
            self._url,
            open_timeout=self._settings.open_timeout_seconds,
            ping_interval=self._settings.ping_interval_seconds,
        )

    async def send(self, data: str) -> None:
        if not self._ws:
            raise RuntimeError("WebSocket transport not connected")
        LOGGER.debug("WebSocket send: %s", data)
        await self._ws.send(data)

    async def receive(self) -> str:
        if not self._ws:
            raise TransportClosed(ABNORMAL_CLOSURE, "not connected")
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as exc:
            frame = exc.rcvd
            if frame is None:
                raise TransportClosed(ABNORMAL_CLOSURE, "connection lost") from exc
            raise TransportClosed(frame.code, frame.reason) from exc
        LOGGER.debug("WebSocket receive: %s", raw)
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return raw

    async def close(self, code: int, reason: str) -> None:
        if self._ws:
            LOGGER.info("Closing WebSocket transport code=%s reason=%s", code, reason)
            await self._ws.close(code=code, reason=reason)
