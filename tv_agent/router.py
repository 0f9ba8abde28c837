from __future__ import annotations

import logging

from tv_agent.codec import (
    CommandRequest,
    Confirm,
    DecodeError,
    InboundMessage,
    Pong,
    Welcome,
    decode,
)
from tv_agent.executor import CommandExecutor, resolve_key_code
from tv_agent.health import Heartbeat
from tv_agent.identity import DeviceIdentity

logger = logging.getLogger(__name__)

BROADCAST_TARGET = "all"


class MessageRouter:
    """Decodes inbound frames and dispatches commands addressed to this device.

    The router never touches the transport. ``route`` returns the reply the
    connection manager should send (a ``Confirm``), or ``None``.
    """

    def __init__(self, identity: DeviceIdentity, executor: CommandExecutor, heartbeat: Heartbeat) -> None:
        self.identity = identity
        self.executor = executor
        self.heartbeat = heartbeat

    def route(self, raw: str | bytes) -> Confirm | None:
        logger.debug("Message received (raw): %r", raw)
        try:
            message = decode(raw)
        except DecodeError as e:
            logger.warning("Dropping malformed message: %s", e)
            return None

        self.heartbeat.touch()
        return self.dispatch(message)

    def dispatch(self, message: InboundMessage) -> Confirm | None:
        if isinstance(message, Welcome):
            logger.info("Welcome message received: %s", message.text)
            return None

        if isinstance(message, Pong):
            logger.debug("Pong received")
            return None

        if isinstance(message, CommandRequest) and self._is_for_me(message.target):
            return self._execute(message)

        target = message.target if isinstance(message, CommandRequest) else None
        logger.info("Ignoring message for target %r (device id %s)", target, self.identity.id)
        return None

    def _is_for_me(self, target: object) -> bool:
        return target == self.identity.id or target == BROADCAST_TARGET

    def _execute(self, message: CommandRequest) -> Confirm:
        code = resolve_key_code(message.command)
        logger.info("Executing command %r (key code %r)", message.command, code)
        try:
            self.executor.execute(code)
        except Exception:
            logger.exception("Executor failed for command %r", message.command)
        # The confirmation does not wait for, or depend on, the execution result.
        return Confirm(id=self.identity.id, command=message.command, status="ok")
