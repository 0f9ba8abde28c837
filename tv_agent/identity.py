"""Device identity: persisted id, Android build props, local address."""

from __future__ import annotations

import logging
import secrets
import socket
import string
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
_ID_ALPHABET = string.digits + string.ascii_uppercase


@dataclass(frozen=True)
class DeviceIdentity:
    id: str
    model: str
    brand: str
    ip: str
    group_id: int


def generate_device_id() -> str:
    return "TV-" + "".join(secrets.choice(_ID_ALPHABET) for _ in range(8))


def load_or_create_device_id(path: Path) -> str:
    """Return the persisted device id, creating one on first run."""
    if path.exists():
        existing = path.read_text(encoding="utf-8").strip()
        if existing:
            return existing
        logger.warning("Device id file %s is empty, generating a new id", path)

    device_id = generate_device_id()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(device_id, encoding="utf-8")
    logger.info("Generated new device id %s", device_id)
    return device_id


def get_prop(prop: str) -> str:
    """Read an Android system property via ``getprop``."""
    try:
        result = subprocess.run(["getprop", prop], capture_output=True, text=True, timeout=5)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("getprop %s failed: %s", prop, e)
        return UNKNOWN
    return result.stdout.strip() or UNKNOWN


def get_local_ip() -> str:
    """Best-effort non-loopback IPv4 address of this host."""
    # Connecting a UDP socket sends nothing; it only selects the outbound interface.
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("10.255.255.255", 1))
            addr = s.getsockname()[0]
    except OSError:
        addr = ""
    if addr and not addr.startswith("127."):
        return addr

    try:
        for info in socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET):
            candidate = info[4][0]
            if not candidate.startswith("127."):
                return candidate
    except OSError:
        pass
    return UNKNOWN


def resolve_identity(device_id_path: Path, group_id: int) -> DeviceIdentity:
    return DeviceIdentity(
        id=load_or_create_device_id(device_id_path),
        model=get_prop("ro.product.model"),
        brand=get_prop("ro.product.brand").upper(),
        ip=get_local_ip(),
        group_id=group_id,
    )
