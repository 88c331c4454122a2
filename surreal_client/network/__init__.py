"""Network stack (transport + connection) for the RPC client."""

from surreal_client.network.connection import (
    Connection,
    ConnectionClosedError,
    ConnectionError,
    ConnectionStatus,
    LiveCallback,
    default_transport_factory,
)
from surreal_client.network.transport import BaseTransport, MemoryTransport, TransportClosed, WebSocketTransport

__all__ = [
    "Connection",
    "ConnectionClosedError",
    "ConnectionError",
    "ConnectionStatus",
    "LiveCallback",
    "default_transport_factory",
    "BaseTransport",
    "MemoryTransport",
    "TransportClosed",
    "WebSocketTransport",
]
