"""Liveness tracking for the server connection.

The monitor does not trust the transport's own close signalling: a half-open
TCP connection can stay "open" forever. Instead every inbound message, ping
send and ping/pong frame stamps ``last_activity``, and the connection is
declared stale once nothing has moved for ``stale_multiplier`` ping
intervals.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

Clock = Callable[[], float]


@dataclass
class Heartbeat:
    ping_interval: float
    stale_multiplier: float = 3.0
    clock: Clock = time.monotonic
    last_activity: float = field(default=0.0)

    def __post_init__(self) -> None:
        self.last_activity = self.clock()

    def touch(self) -> None:
        self.last_activity = self.clock()

    def idle(self) -> float:
        return self.clock() - self.last_activity

    @property
    def stale_after(self) -> float:
        return self.ping_interval * self.stale_multiplier


class HealthMonitor:
    """Decides when an open connection has gone quiet for too long."""

    def __init__(self, heartbeat: Heartbeat, check_multiplier: float = 2.0) -> None:
        self.heartbeat = heartbeat
        self.check_interval = heartbeat.ping_interval * check_multiplier

    def is_stale(self) -> bool:
        return self.heartbeat.idle() > self.heartbeat.stale_after
