"""RPC frame models plus encode/decode helpers."""

from __future__ import annotations

import json
import logging
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Sequence, Union

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

LOGGER = logging.getLogger(__name__)

RequestId = Union[str, int]


class CloseCode(IntEnum):
    NORMAL = 1000
    GOING_AWAY = 1001


SOCKET_CLOSURE_REASONS: Dict[int, str] = {
    CloseCode.NORMAL: "CLOSE_NORMAL",
    CloseCode.GOING_AWAY: "CLOSE_GOING_AWAY",
}

# Reported when the socket dies without a close frame.
ABNORMAL_CLOSURE = 1006


class LiveAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CLOSE = "CLOSE"


class CloseDetail(str, Enum):
    SOCKET_CLOSED = "SOCKET_CLOSED"
    QUERY_KILLED = "QUERY_KILLED"


class RpcError(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: int
    message: str


class RpcReply(BaseModel):
    """Direct reply correlated to one request by ``id``; unknown fields are kept.

    ``error`` is kept as sent by the server; see ``RpcError`` for the usual shape.
    """

    model_config = ConfigDict(extra="allow")

    id: RequestId
    result: Any = None
    error: Any = None


class LiveEvent(BaseModel):
    """Payload handed to live query listeners."""

    model_config = ConfigDict(extra="allow")

    action: Any
    result: Any = None
    detail: Optional[str] = None

    @classmethod
    def closed(cls, detail: CloseDetail) -> LiveEvent:
        return cls(action=LiveAction.CLOSE.value, detail=detail.value)

    @property
    def is_close(self) -> bool:
        return self.action == LiveAction.CLOSE.value


class LiveEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    action: Any
    result: Any

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        return value if isinstance(value, str) else str(value)

    def to_event(self) -> LiveEvent:
        return LiveEvent.model_validate(self.model_dump(exclude={"id"}))


class LiveNotification(BaseModel):
    """Push notification: no top-level ``id``, ``result`` carries the envelope."""

    model_config = ConfigDict(extra="allow")

    result: LiveEnvelope


Frame = Union[LiveNotification, RpcReply]


def encode_request(request_id: RequestId, method: str, params: Optional[Sequence[Any]] = None) -> str:
    payload = {"id": request_id, "method": method, "params": list(params or [])}
    return json.dumps(jsonable_encoder(payload))


LIVE_ENVELOPE_FIELDS = frozenset({"id", "action", "result"})


def is_live_notification(data: Dict[str, Any]) -> bool:
    """Push notifications carry no top-level ``id`` and an ``{id, action, result}`` envelope."""

    envelope = data.get("result")
    return "id" not in data and isinstance(envelope, dict) and LIVE_ENVELOPE_FIELDS <= envelope.keys()


def decode_frame(raw: Union[str, bytes]) -> Optional[Frame]:
    """Classify one inbound frame by shape; returns None for anything that is neither."""

    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        LOGGER.warning("Dropping unparsable frame: %s", exc)
        return None
    if not isinstance(data, dict):
        LOGGER.warning("Dropping non-object frame of type %s", type(data).__name__)
        return None
    if is_live_notification(data):
        return LiveNotification.model_validate(data)
    if "id" not in data:
        LOGGER.debug("Dropping frame without id: %s", data)
        return None
    try:
        return RpcReply.model_validate(data)
    except ValidationError:
        LOGGER.debug("Dropping frame with unusable id: %s", data)
        return None
