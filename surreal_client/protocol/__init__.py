from .frames import (
    ABNORMAL_CLOSURE,
    SOCKET_CLOSURE_REASONS,
    CloseCode,
    CloseDetail,
    Frame,
    LiveAction,
    LiveEnvelope,
    LiveEvent,
    LiveNotification,
    RequestId,
    RpcError,
    RpcReply,
    decode_frame,
    encode_request,
)
from .ids import next_request_id
from .template import PreparedQuery, surql, surrealql
from .url import normalize_rpc_url

__all__ = [
    "ABNORMAL_CLOSURE",
    "SOCKET_CLOSURE_REASONS",
    "CloseCode",
    "CloseDetail",
    "Frame",
    "LiveAction",
    "LiveEnvelope",
    "LiveEvent",
    "LiveNotification",
    "RequestId",
    "RpcError",
    "RpcReply",
    "decode_frame",
    "encode_request",
    "next_request_id",
    "PreparedQuery",
    "surql",
    "surrealql",
    "normalize_rpc_url",
]
