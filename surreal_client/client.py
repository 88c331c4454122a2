"""RPC client facade over a persistent connection."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from surreal_client.config import ClientSettings, get_settings
from surreal_client.network.connection import Connection, ConnectionStatus, Hook, LiveCallback, TransportFactory
from surreal_client.protocol import CloseCode, PreparedQuery, RpcError, RpcReply

LOGGER = logging.getLogger(__name__)


class RpcRequestError(RuntimeError):
    """Raised when the server answers a request with an error object."""

    def __init__(self, method: str, message: str, *, code: Optional[int] = None) -> None:
        super().__init__(f"{method} failed: {message}")
        self.method = method
        self.code = code


@dataclass
class SurrealClient:
    """Typed entry points for the RPC methods, with `use` re-applied after reconnects.

    Usage:
        async with SurrealClient(settings) as client:
            await client.use("test", "test")
            rows = await client.query("SELECT * FROM person")
    """

    settings: ClientSettings = field(default_factory=get_settings)
    transport_factory: Optional[TransportFactory] = None
    on_connect: Optional[Hook] = None
    on_close: Optional[Hook] = None
    on_error: Optional[Hook] = None

    connection: Connection = field(init=False, repr=False)
    _namespace: Optional[str] = field(default=None, init=False, repr=False)
    _database: Optional[str] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self._namespace = self.settings.namespace
        self._database = self.settings.database
        self.connection = Connection(
            self.settings,
            self.transport_factory,
            on_connect=self._handle_connect,
            on_close=self.on_close,
            on_error=self.on_error,
        )

    @property
    def status(self) -> ConnectionStatus:
        return self.connection.connection_status

    async def connect(self) -> None:
        await self.connection.open()

    async def close(self) -> None:
        await self.connection.close(CloseCode.NORMAL)

    async def ping(self) -> Any:
        return await self._call("ping", [])

    async def use(self, namespace: str, database: str) -> Any:
        result = await self._call("use", [namespace, database])
        self._namespace = namespace
        self._database = database
        return result

    async def query(
        self,
        query: Union[str, PreparedQuery],
        bindings: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if isinstance(query, PreparedQuery):
            merged = {**query.bindings, **(bindings or {})}
            return await self._call("query", [query.query, merged])
        return await self._call("query", [query, bindings or {}])

    async def live(self, table: str, callback: LiveCallback, *, diff: bool = False) -> str:
        """Start a live query on ``table`` and route its notifications to ``callback``."""

        params: list[Any] = [table, True] if diff else [table]
        subscription_id = str(await self._call("live", params))
        await self.connection.listen_live(subscription_id, callback)
        return subscription_id

    async def listen(self, subscription_id: str, callback: LiveCallback) -> None:
        await self.connection.listen_live(subscription_id, callback)

    async def kill(self, subscription_id: str) -> Any:
        reply = await self.connection.kill(subscription_id)
        return self._unwrap("kill", reply)

    async def _call(self, method: str, params: list[Any]) -> Any:
        reply = await self.connection.send(method, params)
        return self._unwrap(method, reply)

    @staticmethod
    def _unwrap(method: str, reply: RpcReply) -> Any:
        if reply.error is None:
            return reply.result
        try:
            detail = RpcError.model_validate(reply.error)
        except ValidationError:
            raise RpcRequestError(method, str(reply.error)) from None
        raise RpcRequestError(method, detail.message, code=detail.code)

    async def _handle_connect(self) -> None:
        if self._namespace and self._database:
            LOGGER.info("Selecting namespace=%s database=%s", self._namespace, self._database)
            try:
                await self._call("use", [self._namespace, self._database])
            except Exception:  # noqa: BLE001
                LOGGER.warning("Failed to re-apply namespace/database after connect", exc_info=True)
        if self.on_connect is not None:
            result = self.on_connect()
            if inspect.isawaitable(result):
                await result

    async def __aenter__(self) -> SurrealClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
