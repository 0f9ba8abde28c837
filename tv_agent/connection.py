"""Connection lifecycle for the control-server WebSocket."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from contextlib import aclosing
from typing import Any, Callable, Coroutine

from tv_agent.backoff import Backoff
from tv_agent.codec import OutboundMessage, Ping, Register, encode
from tv_agent.config import AgentConfig
from tv_agent.executor import CommandExecutor
from tv_agent.health import Clock, HealthMonitor, Heartbeat
from tv_agent.host import HostResources
from tv_agent.identity import DeviceIdentity
from tv_agent.registration import RegistrationClient
from tv_agent.router import MessageRouter
from tv_agent.transport import EventKind, Transport, TransportEvent, TransportFactory, websocket_factory

logger = logging.getLogger(__name__)

PING_TIMER = "ping"
HEALTH_TIMER = "health"
RECONNECT_TIMER = "reconnect"


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class ConnectionManager:
    """Owns the single server connection and every timer around it.

    All state lives on one event loop. Only this class creates or releases
    transports; the router hands back replies and the health monitor only
    reads the heartbeat.
    """

    def __init__(
        self,
        config: AgentConfig,
        identity: DeviceIdentity,
        *,
        executor: CommandExecutor,
        registration: RegistrationClient | None = None,
        transport_factory: TransportFactory | None = None,
        resources: HostResources | None = None,
        ip_lookup: Callable[[], str] | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.config = config
        self.identity = identity
        self.registration = registration
        self.resources = resources
        self._transport_factory = transport_factory or websocket_factory(config.open_timeout)
        self._ip_lookup = ip_lookup or (lambda: identity.ip)

        self.backoff = Backoff(
            min_delay=config.reconnect_delay_min,
            max_delay=config.reconnect_delay_max,
            max_attempts=config.max_reconnect_attempts,
        )
        self.heartbeat = Heartbeat(config.ping_interval, config.stale_multiplier, clock=clock)
        self.health = HealthMonitor(self.heartbeat, config.health_check_multiplier)
        self.router = MessageRouter(identity, executor, self.heartbeat)

        self.state = ConnectionState.DISCONNECTED
        self.is_reconnecting = False
        self.exit_code = 0
        self._transport: Transport | None = None
        self._listener: asyncio.Task[None] | None = None
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._shut_down = False
        self._stopped = asyncio.Event()

    @property
    def transport(self) -> Transport | None:
        return self._transport

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    def active_timers(self) -> dict[str, asyncio.Task[None]]:
        return {name: task for name, task in self._timers.items() if not task.done()}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> int:
        """Connect and keep the link alive until shutdown. Returns the exit code."""
        self.connect()
        await self._stopped.wait()
        await self._drain()
        return self.exit_code

    def connect(self) -> None:
        """Start a new connection attempt, releasing any previous transport first."""
        if self._shut_down:
            return
        self._release_transport()

        logger.info("Connecting to %s", self.config.ws_url)
        try:
            transport = self._transport_factory(self.config.ws_url)
        except Exception as e:
            logger.error("Error creating transport: %s", e)
            self.state = ConnectionState.DISCONNECTED
            self.schedule_reconnect()
            return

        self._transport = transport
        self.state = ConnectionState.CONNECTING
        self._listener = self._spawn(self._listen(transport))

    def schedule_reconnect(self) -> None:
        """Arm the reconnect timer. A no-op while one is already pending."""
        if self._shut_down:
            return
        if self.is_reconnecting:
            logger.debug("Reconnect already scheduled, skipping")
            return

        if self.backoff.exhausted:
            logger.error("Max reconnect attempts (%d) reached, stopping", self.backoff.max_attempts)
            self.shutdown(exit_code=1)
            return

        self.is_reconnecting = True
        self.state = ConnectionState.DISCONNECTED
        delay = self.backoff.next_delay()
        logger.warning("Connection lost (attempt #%d), reconnecting in %.1fs", self.backoff.attempts, delay)

        self._cancel_timer(PING_TIMER)
        self._cancel_timer(HEALTH_TIMER)
        self._arm(RECONNECT_TIMER, self._reconnect_after(delay))

    def shutdown(self, exit_code: int = 0) -> None:
        """Tear everything down. Safe to call more than once; only the first call counts."""
        if self._shut_down:
            return
        self._shut_down = True
        self.exit_code = exit_code
        self.state = ConnectionState.CLOSING
        logger.info("Cleaning up...")

        for name in list(self._timers):
            self._cancel_timer(name)
        self.is_reconnecting = False
        self._release_transport()
        if self.resources is not None:
            self.resources.release()

        self.state = ConnectionState.DISCONNECTED
        self._stopped.set()

    async def stop(self) -> None:
        """Graceful stop used by the signal handlers."""
        self.shutdown(exit_code=0)
        await self._drain()

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    async def _listen(self, transport: Transport) -> None:
        async with aclosing(transport.events()) as events:
            async for event in events:
                if transport is not self._transport:
                    return
                await self._handle_event(transport, event)

    async def _handle_event(self, transport: Transport, event: TransportEvent) -> None:
        kind = event.kind
        if kind is EventKind.OPENED:
            await self._on_open(transport)
        elif kind is EventKind.MESSAGE:
            reply = self.router.route(event.data)
            if reply is not None and transport.is_open:
                if await self._send(transport, reply):
                    logger.info("Confirmation sent for %r", reply.command)
        elif kind in (EventKind.PING, EventKind.PONG):
            logger.debug("Transport %s frame received", kind.value)
            self.heartbeat.touch()
        elif kind is EventKind.CLOSED:
            logger.warning("Connection closed (code: %s, reason: %s)", event.code, event.reason or "none")
            self.state = ConnectionState.DISCONNECTED
            self.schedule_reconnect()
        elif kind is EventKind.ERRORED:
            logger.warning("WebSocket error: %s", event.error)
            if event.fatal:
                self.state = ConnectionState.DISCONNECTED
                self.schedule_reconnect()

    async def _on_open(self, transport: Transport) -> None:
        logger.info("Connected to server")
        self.state = ConnectionState.OPEN
        self.backoff.reset()
        self.is_reconnecting = False
        self.heartbeat.touch()

        self._cancel_timer(PING_TIMER)
        self._cancel_timer(HEALTH_TIMER)
        self._arm(PING_TIMER, self._ping_loop(transport))
        self._arm(HEALTH_TIMER, self._health_loop())

        await self._send(transport, Register(self.identity))
        logger.info(
            "Registered tv_id=%s model=%s brand=%s ip=%s group=%s",
            self.identity.id,
            self.identity.model,
            self.identity.brand,
            self.identity.ip,
            self.identity.group_id,
        )

        if self.registration is not None and not self.registration.confirmed:
            self._spawn(self.registration.register())

    async def _send(self, transport: Transport, message: OutboundMessage) -> bool:
        text = encode(message)
        logger.debug("Sending: %s", text)
        try:
            await transport.send(text)
        except Exception as e:
            logger.warning("Send failed for %s: %s", type(message).__name__, e)
            return False
        return True

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def _ping_loop(self, transport: Transport) -> None:
        while True:
            await asyncio.sleep(self.config.ping_interval)
            # The lookup may fall back to DNS; keep it off the loop.
            ip = await asyncio.to_thread(self._ip_lookup)
            if transport is not self._transport or not transport.is_open:
                logger.warning("WebSocket not open, reconnecting...")
                self.schedule_reconnect()
                return
            try:
                await transport.send(encode(Ping(id=self.identity.id, ip=ip)))
                self.heartbeat.touch()
                await transport.ping()
            except Exception as e:
                logger.warning("Ping error: %s", e)
                self.schedule_reconnect()
                return
            logger.debug("Ping sent")

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.health.check_interval)
            if self.check_health():
                return

    def check_health(self) -> bool:
        """Force a reconnect when the open connection has gone quiet. Returns ``True`` if it did."""
        transport = self._transport
        if self.state is not ConnectionState.OPEN or transport is None:
            return False
        if not self.health.is_stale():
            return False

        logger.warning("Connection stale (idle %.1fs), forcing reconnect", self.heartbeat.idle())
        transport.terminate()
        self.state = ConnectionState.DISCONNECTED
        self.schedule_reconnect()
        return True

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timers.pop(RECONNECT_TIMER, None)
        self.is_reconnecting = False
        self.connect()

    def _arm(self, name: str, coro: Coroutine[Any, Any, None]) -> None:
        self._cancel_timer(name)
        self._timers[name] = asyncio.get_running_loop().create_task(coro, name=f"tv-agent-{name}")

    def _cancel_timer(self, name: str) -> None:
        task = self._timers.pop(name, None)
        if task is not None and not task.done():
            task.cancel()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _release_transport(self) -> None:
        transport, self._transport = self._transport, None
        listener, self._listener = self._listener, None
        if listener is not None and listener is not asyncio.current_task() and not listener.done():
            listener.cancel()
        if transport is not None and (transport.is_open or transport.is_connecting):
            self._spawn(self._close_transport(transport))

    async def _close_transport(self, transport: Transport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.warning("Error closing transport: %s", e)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task failed", exc_info=task.exception())

    async def _drain(self, timeout: float = 5.0) -> None:
        pending = [t for t in self._background if not t.done() and t is not asyncio.current_task()]
        if pending:
            await asyncio.wait(pending, timeout=timeout)
