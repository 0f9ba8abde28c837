"""WebSocket transport exposed as a stream of lifecycle events."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Protocol

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed
from websockets.frames import Frame, Opcode
from websockets.protocol import State

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    OPENED = "opened"
    MESSAGE = "message"
    PING = "ping"
    PONG = "pong"
    CLOSED = "closed"
    ERRORED = "errored"


@dataclass(frozen=True)
class TransportEvent:
    kind: EventKind
    data: Any = None
    code: int | None = None
    reason: str = ""
    error: BaseException | None = None
    fatal: bool = False

    @classmethod
    def opened(cls) -> "TransportEvent":
        return cls(EventKind.OPENED)

    @classmethod
    def message(cls, data: str | bytes) -> "TransportEvent":
        return cls(EventKind.MESSAGE, data=data)

    @classmethod
    def ping(cls) -> "TransportEvent":
        return cls(EventKind.PING)

    @classmethod
    def pong(cls) -> "TransportEvent":
        return cls(EventKind.PONG)

    @classmethod
    def closed(cls, code: int | None, reason: str = "") -> "TransportEvent":
        return cls(EventKind.CLOSED, code=code, reason=reason)

    @classmethod
    def errored(cls, error: BaseException, *, fatal: bool) -> "TransportEvent":
        return cls(EventKind.ERRORED, error=error, fatal=fatal)


class Transport(Protocol):
    """What the connection manager needs from a transport."""

    @property
    def is_open(self) -> bool: ...

    @property
    def is_connecting(self) -> bool: ...

    def events(self) -> AsyncIterator[TransportEvent]:
        """Connect, then yield events until the connection ends."""

    async def send(self, text: str) -> None: ...

    async def ping(self) -> None:
        """Send a protocol-level ping; a ``PONG`` event follows when answered."""

    def terminate(self) -> None:
        """Drop the connection immediately, without a closing handshake."""

    async def close(self) -> None: ...


TransportFactory = Callable[[str], Transport]


class _PingReportingConnection(ClientConnection):
    """Client connection that reports ping frames received from the server."""

    on_ping: Callable[[], None] | None = None

    def process_event(self, event: Any) -> None:
        super().process_event(event)
        if isinstance(event, Frame) and event.opcode is Opcode.PING and self.on_ping is not None:
            self.on_ping()


class WebSocketTransport:
    """A single WebSocket connection attempt.

    Instances are not reusable: the connection manager creates a new one per
    attempt. Keepalive pings from the library are disabled because liveness
    is tracked by the health monitor instead.

    Pings from the server are still answered by ``websockets``; they are
    also surfaced as ``PING`` events, as are pongs answering our own pings.
    """

    def __init__(self, url: str, *, open_timeout: float = 10.0) -> None:
        self.url = url
        self.open_timeout = open_timeout
        self._ws: ClientConnection | None = None
        self._connecting = False
        self._queue: asyncio.Queue[TransportEvent] = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    @property
    def is_connecting(self) -> bool:
        return self._connecting

    async def events(self) -> AsyncIterator[TransportEvent]:
        self._connecting = True
        try:
            self._ws = await connect(
                self.url,
                open_timeout=self.open_timeout,
                ping_interval=None,
                create_connection=_PingReportingConnection,
            )
            self._ws.on_ping = self._on_ping
        except Exception as e:
            yield TransportEvent.errored(e, fatal=True)
            return
        finally:
            self._connecting = False

        yield TransportEvent.opened()

        pump = asyncio.get_running_loop().create_task(self._pump(self._ws))
        try:
            while True:
                event = await self._queue.get()
                yield event
                if event.kind is EventKind.CLOSED or (event.kind is EventKind.ERRORED and event.fatal):
                    return
        finally:
            pump.cancel()

    async def _pump(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                self._queue.put_nowait(TransportEvent.message(raw))
        except ConnectionClosed:
            pass
        except Exception as e:
            self._queue.put_nowait(TransportEvent.errored(e, fatal=True))
            return
        self._queue.put_nowait(TransportEvent.closed(ws.close_code, ws.close_reason or ""))

    async def send(self, text: str) -> None:
        if self._ws is None:
            raise ConnectionError("WebSocket is not connected")
        await self._ws.send(text)

    async def ping(self) -> None:
        if self._ws is None:
            raise ConnectionError("WebSocket is not connected")
        waiter = await self._ws.ping()
        waiter.add_done_callback(self._on_pong)

    def _on_ping(self) -> None:
        self._queue.put_nowait(TransportEvent.ping())

    def _on_pong(self, fut: asyncio.Future[Any]) -> None:
        if fut.cancelled() or fut.exception() is not None:
            return
        self._queue.put_nowait(TransportEvent.pong())

    def terminate(self) -> None:
        if self._ws is not None:
            self._ws.transport.abort()

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()


def websocket_factory(open_timeout: float = 10.0) -> TransportFactory:
    def factory(url: str) -> Transport:
        return WebSocketTransport(url, open_timeout=open_timeout)

    return factory
