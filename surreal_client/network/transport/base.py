"""Transport abstractions for the RPC connection."""

from __future__ import annotations

from abc import ABC, abstractmethod


class TransportClosed(Exception):
    """Raised by ``receive`` once the underlying socket has closed."""

    def __init__(self, code: int, reason: str = "") -> None:
        super().__init__(f"socket closed ({code}) {reason}".rstrip())
        self.code = code
        self.reason = reason


class BaseTransport(ABC):
    """Abstract duplex text socket used by the connection."""

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def send(self, data: str) -> None:
        ...

    @abstractmethod
    async def receive(self) -> str:
        ...

    @abstractmethod
    async def close(self, code: int, reason: str) -> None:
        ...
