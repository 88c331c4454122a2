"""Connection wrapper that owns the socket lifecycle, request correlation and live query routing."""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from surreal_client.config import ClientSettings
from surreal_client.network.transport.base import BaseTransport, TransportClosed
from surreal_client.network.transport.memory import MemoryTransport
from surreal_client.network.transport.websocket import WebSocketTransport
from surreal_client.protocol import (
    ABNORMAL_CLOSURE,
    SOCKET_CLOSURE_REASONS,
    CloseCode,
    CloseDetail,
    LiveEnvelope,
    LiveEvent,
    LiveNotification,
    RequestId,
    RpcReply,
    decode_frame,
    encode_request,
    next_request_id,
    normalize_rpc_url,
)

LOGGER = logging.getLogger(__name__)

Hook = Callable[[], Optional[Awaitable[None]]]
LiveCallback = Callable[[LiveEvent], Optional[Awaitable[None]]]
TransportFactory = Callable[[str], BaseTransport]

# Connection whose dispatch guard the current context already holds.
_IN_DISPATCH: contextvars.ContextVar[Optional["Connection"]] = contextvars.ContextVar(
    "surreal_in_dispatch", default=None
)


class ConnectionError(RuntimeError):
    """Raised when the transport connection fails."""


class ConnectionClosedError(ConnectionError):
    """Raised for requests abandoned because the socket closed."""


class ConnectionStatus(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    RECONNECTING = "reconnecting"


@dataclass
class _BufferPurge:
    """Queued behind in-flight notifications once a kill is acknowledged."""

    subscription_id: str
    done: Optional[asyncio.Future[None]] = None


DispatchItem = Optional[Union[LiveEnvelope, _BufferPurge]]


def default_transport_factory(settings: ClientSettings) -> TransportFactory:
    if settings.transport == "memory":
        return lambda url: MemoryTransport(url)
    return lambda url: WebSocketTransport(url, settings)


class Connection:
    """Keeps one RPC socket alive and multiplexes requests and live queries over it."""

    def __init__(
        self,
        settings: ClientSettings,
        transport_factory: Optional[TransportFactory] = None,
        *,
        on_connect: Optional[Hook] = None,
        on_close: Optional[Hook] = None,
        on_error: Optional[Hook] = None,
        id_factory: Optional[Callable[[], RequestId]] = None,
        reconnect_delay: float | None = None,
        reconnect_max_attempts: int | None = None,
    ) -> None:
        self._settings = settings
        self._url = normalize_rpc_url(str(settings.url))
        self._transport_factory = transport_factory or default_transport_factory(settings)
        self._id_factory = id_factory or next_request_id
        self._on_connect = on_connect
        self._on_close = on_close
        self._on_error = on_error
        self._reconnect_delay = float(
            reconnect_delay if reconnect_delay is not None else settings.reconnect_delay_seconds
        )
        self._reconnect_max_attempts = int(
            reconnect_max_attempts if reconnect_max_attempts is not None else settings.reconnect_max_attempts
        )
        self._live_buffer_max = int(settings.live_buffer_max or 0)

        self._status = ConnectionStatus.CLOSED
        self._transport: Optional[BaseTransport] = None
        self._ready: Optional[asyncio.Future[None]] = None
        self._closed: Optional[asyncio.Future[None]] = None
        self._recv_task: Optional[asyncio.Task[None]] = None
        self._dispatch_task: Optional[asyncio.Task[None]] = None
        self._dispatch_queue: Optional[asyncio.Queue[DispatchItem]] = None
        self._reconnect_task: Optional[asyncio.Task[None]] = None
        self._dispatch_lock = asyncio.Lock()

        self._pending: Dict[RequestId, asyncio.Future[RpcReply]] = {}
        self._listeners: Dict[str, List[LiveCallback]] = {}
        self._early_arrivals: Dict[str, List[LiveEvent]] = {}

    @property
    def url(self) -> str:
        return self._url

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._status

    # Lifecycle -----------------------------------------------------------------

    async def open(self) -> None:
        """(Re)open the socket; returns once the handshake succeeded."""

        self._cancel_reconnect()
        await self._open(settle_on_error=True)

    async def close(self, code: int = CloseCode.NORMAL) -> None:
        """Close the socket on purpose; no reconnection follows."""

        if code not in SOCKET_CLOSURE_REASONS:
            raise ValueError(f"Unknown socket closure code {code}")
        self._status = ConnectionStatus.CLOSED
        self._cancel_reconnect()
        if self._ready is not None:
            self._fail_ready(self._ready, ConnectionClosedError("Connection closed before it was ready"))
        waiter = await self._close_transport(code)
        await self._run_hook(self._on_close, "on_close")
        if waiter is not None:
            await waiter

    async def _open(self, *, settle_on_error: bool) -> None:
        loop = asyncio.get_running_loop()
        ready = self._ready
        if ready is None or ready.done():
            ready = loop.create_future()
            self._ready = ready

        if self._transport is not None:
            # Tearing down our own socket must not look like an unsolicited close.
            self._status = ConnectionStatus.CLOSED
        waiter = await self._close_transport(CloseCode.NORMAL)
        if waiter is not None:
            await waiter

        transport = self._transport_factory(self._url)
        self._transport = transport
        try:
            await transport.connect()
            if self._transport is not transport:
                with contextlib.suppress(Exception):
                    await transport.close(CloseCode.NORMAL, SOCKET_CLOSURE_REASONS[CloseCode.NORMAL])
                raise ConnectionClosedError("Connection closed while opening")
        except Exception as exc:  # noqa: BLE001
            superseded = self._transport is not transport
            if not superseded:
                self._transport = None
            LOGGER.warning("Socket connect to %s failed: %s", self._url, exc)
            error = exc if isinstance(exc, ConnectionError) else ConnectionError(f"Failed to connect to {self._url}: {exc}")
            if error is not exc:
                error.__cause__ = exc
            if not settle_on_error:
                raise error
            if superseded:
                # close() or a newer open() took over; the caller owns status and readiness now.
                raise error
            self._status = ConnectionStatus.CLOSED
            self._fail_ready(ready, error)
            await self._run_hook(self._on_error, "on_error")
            raise error

        queue: asyncio.Queue[DispatchItem] = asyncio.Queue()
        self._status = ConnectionStatus.OPEN
        self._closed = None
        self._dispatch_queue = queue
        self._dispatch_task = asyncio.create_task(self._dispatch_loop(queue), name="live-dispatch")
        self._recv_task = asyncio.create_task(self._receive_loop(transport, queue), name="rpc-recv")
        LOGGER.info("Socket connected to %s", self._url)
        if not ready.done():
            ready.set_result(None)
        await self._run_hook(self._on_connect, "on_connect")

    async def _close_transport(self, code: int) -> Optional[asyncio.Future[None]]:
        """Ask the live transport to close; returns the future its close handler resolves."""

        transport = self._transport
        self._transport = None
        if transport is None:
            return None
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._closed = waiter
        try:
            await transport.close(code, SOCKET_CLOSURE_REASONS[code])
        except Exception:  # noqa: BLE001
            LOGGER.debug("Suppress transport close error", exc_info=True)
        recv_task = self._recv_task
        if recv_task is None or recv_task.done() or recv_task is asyncio.current_task():
            return None
        return waiter

    async def _receive_loop(self, transport: BaseTransport, queue: asyncio.Queue[DispatchItem]) -> None:
        code, reason = ABNORMAL_CLOSURE, ""
        try:
            while True:
                raw = await transport.receive()
                self._route_frame(raw, queue)
        except TransportClosed as exc:
            code, reason = exc.code, exc.reason
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Receive loop error, treating socket as closed: %s", exc)
            reason = str(exc)
            with contextlib.suppress(Exception):
                await transport.close(CloseCode.GOING_AWAY, SOCKET_CLOSURE_REASONS[CloseCode.GOING_AWAY])
        await self._handle_close(transport, queue, code, reason)

    async def _handle_close(
        self,
        transport: BaseTransport,
        queue: asyncio.Queue[DispatchItem],
        code: int,
        reason: str,
    ) -> None:
        if self._transport is transport:
            self._transport = None
        LOGGER.info("Socket closed code=%s reason=%s", code, reason or "-")

        for subscription_id, callbacks in list(self._listeners.items()):
            event = LiveEvent.closed(CloseDetail.SOCKET_CLOSED)
            for callback in list(callbacks):
                await self._deliver(callback, event, subscription_id)

        pending = self._pending
        self._pending = {}
        self._listeners = {}
        self._early_arrivals = {}
        if self._dispatch_queue is queue:
            self._dispatch_queue = None
        while not queue.empty():
            item = queue.get_nowait()
            if isinstance(item, _BufferPurge):
                self._settle_purge(item)
        queue.put_nowait(None)

        for request_id, future in pending.items():
            if not future.done():
                future.set_exception(ConnectionClosedError(f"Socket closed before reply to request {request_id}"))

        waiter = self._closed
        self._closed = None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

        if self._status is not ConnectionStatus.CLOSED:
            self._status = ConnectionStatus.RECONNECTING
            if self._ready is None or self._ready.done():
                self._ready = asyncio.get_running_loop().create_future()
            self._schedule_reconnect()
            await self._run_hook(self._on_close, "on_close")

    def _schedule_reconnect(self) -> None:
        task = self._reconnect_task
        if task and not task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop(), name="rpc-reconnect")

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if task is not asyncio.current_task():
            self._reconnect_task = None

    async def _reconnect_loop(self) -> None:
        attempt = 0
        while self._status is ConnectionStatus.RECONNECTING:
            attempt += 1
            LOGGER.warning("Reconnecting to %s in %.2fs (attempt %s)", self._url, self._reconnect_delay, attempt)
            await asyncio.sleep(self._reconnect_delay)
            if self._status is not ConnectionStatus.RECONNECTING:
                return
            final = bool(self._reconnect_max_attempts) and attempt >= self._reconnect_max_attempts
            try:
                await self._open(settle_on_error=final)
            except ConnectionError:
                if final:
                    LOGGER.error("Giving up on %s after %s reconnection attempt(s)", self._url, attempt)
                    return
                continue
            attempt = 0

    # Requests ------------------------------------------------------------------

    async def send(self, method: str, params: Optional[Sequence[Any]] = None) -> RpcReply:
        """Send one request and wait for the reply carrying the same id."""

        ready = self._ready
        if ready is None:
            raise ConnectionError("Connection has not been opened")
        await asyncio.shield(ready)
        transport = self._transport
        if transport is None or self._status is not ConnectionStatus.OPEN:
            raise ConnectionError("Transport not available")

        request_id = self._id_factory()
        future: asyncio.Future[RpcReply] = asyncio.get_running_loop().create_future()
        pending = self._pending
        pending[request_id] = future
        try:
            try:
                await transport.send(encode_request(request_id, method, params))
            except Exception as exc:  # noqa: BLE001
                raise ConnectionError(f"Failed to send {method} request: {exc}") from exc
            return await future
        finally:
            pending.pop(request_id, None)

    def _route_frame(self, raw: str, queue: asyncio.Queue[DispatchItem]) -> None:
        frame = decode_frame(raw)
        if isinstance(frame, LiveNotification):
            queue.put_nowait(frame.result)
        elif isinstance(frame, RpcReply):
            future = self._pending.pop(frame.id, None)
            if future is None:
                LOGGER.debug("Dropping reply with no pending request id=%s", frame.id)
                return
            if not future.done():
                future.set_result(frame)

    # Live queries --------------------------------------------------------------

    async def listen_live(self, subscription_id: str, callback: LiveCallback) -> None:
        """Register a listener and replay notifications that arrived before it."""

        async with self._dispatch_guard():
            self._listeners.setdefault(subscription_id, []).append(callback)
            for event in list(self._early_arrivals.get(subscription_id, ())):
                await self._deliver(callback, event, subscription_id)
            self._early_arrivals.pop(subscription_id, None)

    async def kill(self, subscription_id: str) -> RpcReply:
        """Stop a live query locally, then ask the server to kill it."""

        async with self._dispatch_guard():
            callbacks = self._listeners.pop(subscription_id, [])
            event = LiveEvent.closed(CloseDetail.QUERY_KILLED)
            for callback in callbacks:
                await self._deliver(callback, event, subscription_id)
        reply = await self.send("kill", [subscription_id])
        await self._purge_early_arrivals(subscription_id)
        return reply

    async def _purge_early_arrivals(self, subscription_id: str) -> None:
        """Drop the buffer of a killed query, including notifications still queued for dispatch."""

        self._early_arrivals.pop(subscription_id, None)
        queue = self._dispatch_queue
        if queue is None:
            return
        if _IN_DISPATCH.get() is self:
            # Called from a listener: the dispatch task reaches the marker after we return.
            queue.put_nowait(_BufferPurge(subscription_id))
            return
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        queue.put_nowait(_BufferPurge(subscription_id, done))
        await done

    def _settle_purge(self, purge: _BufferPurge) -> None:
        self._early_arrivals.pop(purge.subscription_id, None)
        if purge.done is not None and not purge.done.done():
            purge.done.set_result(None)

    async def _dispatch_loop(self, queue: asyncio.Queue[DispatchItem]) -> None:
        while True:
            envelope = await queue.get()
            if envelope is None:
                return
            if isinstance(envelope, _BufferPurge):
                async with self._dispatch_guard():
                    self._settle_purge(envelope)
                continue
            try:
                async with self._dispatch_guard():
                    await self._dispatch_notification(envelope)
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                LOGGER.exception("Live notification dispatch failed for %s", envelope.id)

    async def _dispatch_notification(self, envelope: LiveEnvelope) -> None:
        subscription_id = envelope.id
        event = envelope.to_event()
        callbacks = self._listeners.get(subscription_id)
        if callbacks:
            await asyncio.gather(*(self._deliver(callback, event, subscription_id) for callback in list(callbacks)))
            return
        buffered = self._early_arrivals.setdefault(subscription_id, [])
        if self._live_buffer_max and len(buffered) >= self._live_buffer_max:
            buffered.pop(0)
            LOGGER.warning("Live buffer full for %s; dropping oldest notification", subscription_id)
        buffered.append(event)

    @contextlib.asynccontextmanager
    async def _dispatch_guard(self) -> AsyncIterator[None]:
        if _IN_DISPATCH.get() is self:
            yield
            return
        async with self._dispatch_lock:
            token = _IN_DISPATCH.set(self)
            try:
                yield
            finally:
                _IN_DISPATCH.reset(token)

    async def _deliver(self, callback: LiveCallback, event: LiveEvent, subscription_id: str) -> None:
        try:
            result = callback(event)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            LOGGER.exception("Live query callback failed for %s", subscription_id)

    @staticmethod
    def _fail_ready(ready: asyncio.Future[None], error: Exception) -> None:
        if ready.done():
            return
        ready.set_exception(error)
        ready.exception()  # waiters observe it through shield(); mark it retrieved

    async def _run_hook(self, hook: Optional[Hook], name: str) -> None:
        if hook is None:
            return
        try:
            result = hook()
            if inspect.isawaitable(result):
                await result
        except Exception:  # noqa: BLE001
            LOGGER.debug("Suppress connection %s hook error", name, exc_info=True)
