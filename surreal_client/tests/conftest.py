import asyncio
from typing import Any, Callable, Optional

import pytest

from surreal_client.config import ClientSettings
from surreal_client.network.transport.memory import MemoryTransport, Responder


def reply_with_method(message: dict[str, Any]) -> dict[str, Any]:
    return {"id": message["id"], "result": message["method"]}


class TransportRecorder:
    """Transport factory that keeps every transport it built."""

    def __init__(self, responder: Optional[Responder] = None) -> None:
        self.responder = responder
        self.created: list[MemoryTransport] = []
        self.fail_next = 0

    def __call__(self, url: str) -> MemoryTransport:
        error = None
        if self.fail_next:
            self.fail_next -= 1
            error = ConnectionRefusedError("connection refused")
        transport = MemoryTransport(url, responder=self.responder, connect_error=error)
        self.created.append(transport)
        return transport

    @property
    def current(self) -> MemoryTransport:
        return self.created[-1]


async def _wait_for(predicate: Callable[[], bool], *, timeout: float = 1.0, interval: float = 0.005) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(
        url="http://db.test:8000",
        transport="memory",
        reconnect_delay_seconds=0.05,
        reconnect_max_attempts=3,
    )


@pytest.fixture
def recorder() -> TransportRecorder:
    return TransportRecorder(responder=reply_with_method)


@pytest.fixture
def silent_recorder() -> TransportRecorder:
    return TransportRecorder()


@pytest.fixture
def wait_for():
    return _wait_for


@pytest.fixture
def make_recorder() -> Callable[..., TransportRecorder]:
    return TransportRecorder
