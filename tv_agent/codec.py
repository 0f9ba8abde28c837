"""Wire format for the control server.

Inbound frames are JSON objects classified into a small set of message
types. Outbound messages are dataclasses serialised to the server's field
names (``tv_id``, ``modeltv``, ``cabangid``).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

from tv_agent.identity import DeviceIdentity


class DecodeError(ValueError):
    """Raised when an inbound frame is not a JSON object."""


def utc_now_iso() -> str:
    """UTC timestamp in the ``2024-01-31T12:00:00.000Z`` form the server expects."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# -----------------------------------------------------------------------------
# Inbound
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Welcome:
    text: Any = None


@dataclass(frozen=True)
class Pong:
    pass


@dataclass(frozen=True)
class CommandRequest:
    target: Any
    command: Any


@dataclass(frozen=True)
class Unrecognized:
    raw: dict[str, Any]


InboundMessage = Union[Welcome, Pong, CommandRequest, Unrecognized]


def decode(raw: str | bytes | bytearray) -> InboundMessage:
    """Classify one inbound frame.

    Raises:
        DecodeError: the frame is not valid UTF-8 JSON, or not a JSON object.
    """
    try:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(str(e)) from e

    if not isinstance(data, dict):
        raise DecodeError(f"expected a JSON object, got {type(data).__name__}")

    msg_type = data.get("type")
    if msg_type == "welcome":
        return Welcome(text=data.get("message"))
    if msg_type == "pong":
        return Pong()
    if "target" in data:
        return CommandRequest(target=data.get("target"), command=data.get("command"))
    return Unrecognized(raw=data)


# -----------------------------------------------------------------------------
# Outbound
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Register:
    identity: DeviceIdentity

    def to_dict(self) -> dict[str, Any]:
        return {"type": "register", **registration_fields(self.identity)}


@dataclass(frozen=True)
class Ping:
    id: str
    ip: str
    time: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "ping", "tv_id": self.id, "ip": self.ip, "time": self.time}


@dataclass(frozen=True)
class Confirm:
    id: str
    command: Any
    status: str = "ok"
    time: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "confirm",
            "tv_id": self.id,
            "command": self.command,
            "status": self.status,
            "time": self.time,
        }


OutboundMessage = Union[Register, Ping, Confirm]


def registration_fields(identity: DeviceIdentity) -> dict[str, Any]:
    """Identity fields shared by the socket ``register`` message and the HTTP call."""
    return {
        "tv_id": identity.id,
        "model": identity.model,
        "ip": identity.ip,
        "modeltv": identity.brand,
        "cabangid": identity.group_id,
    }


def encode(message: OutboundMessage) -> str:
    return json.dumps(message.to_dict())
