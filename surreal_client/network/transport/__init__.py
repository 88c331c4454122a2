"""Socket transports for the RPC connection."""

from surreal_client.network.transport.base import BaseTransport, TransportClosed
from surreal_client.network.transport.memory import MemoryTransport
from surreal_client.network.transport.websocket import WebSocketTransport

__all__ = ["BaseTransport", "TransportClosed", "MemoryTransport", "WebSocketTransport"]
