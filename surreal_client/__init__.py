"""Persistent, auto-reconnecting WebSocket RPC client with live query routing."""

from surreal_client.client import RpcRequestError, SurrealClient
from surreal_client.config import ClientSettings, get_settings
from surreal_client.network import (
    BaseTransport,
    Connection,
    ConnectionClosedError,
    ConnectionError,
    ConnectionStatus,
    MemoryTransport,
    TransportClosed,
    WebSocketTransport,
)
from surreal_client.protocol import (
    SOCKET_CLOSURE_REASONS,
    CloseCode,
    CloseDetail,
    LiveAction,
    LiveEvent,
    PreparedQuery,
    RpcReply,
    surql,
    surrealql,
)

__all__ = [
    "SurrealClient",
    "RpcRequestError",
    "ClientSettings",
    "get_settings",
    "BaseTransport",
    "Connection",
    "ConnectionClosedError",
    "ConnectionError",
    "ConnectionStatus",
    "MemoryTransport",
    "TransportClosed",
    "WebSocketTransport",
    "SOCKET_CLOSURE_REASONS",
    "CloseCode",
    "CloseDetail",
    "LiveAction",
    "LiveEvent",
    "PreparedQuery",
    "RpcReply",
    "surql",
    "surrealql",
]
