from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml


class ConfigError(RuntimeError):
    pass


def _termux_home() -> Path:
    return Path(os.getenv("HOME") or Path.home())


@dataclass(frozen=True)
class AgentConfig:
    """Runtime settings for the agent. Durations are in seconds."""

    ws_url: str
    register_url: str
    group_id: int = 1
    ping_interval: float = 60.0
    reconnect_delay_min: float = 5.0
    reconnect_delay_max: float = 300.0
    max_reconnect_attempts: int = 100
    stale_multiplier: float = 3.0
    health_check_multiplier: float = 2.0
    open_timeout: float = 10.0
    register_timeout: float = 10.0
    device_id_path: Path = field(default_factory=lambda: _termux_home() / "tv_id.txt")
    lock_path: Path = field(default_factory=lambda: _termux_home() / "tvagent.lock")
    wake_lock: bool = True
    adb_path: str = "adb"

    def __post_init__(self) -> None:
        # YAML and env values arrive as strings; coerce paths once here.
        object.__setattr__(self, "device_id_path", Path(self.device_id_path).expanduser())
        object.__setattr__(self, "lock_path", Path(self.lock_path).expanduser())
        self.validate()

    def validate(self) -> None:
        for name in ("ws_url", "register_url", "adb_path"):
            if not isinstance(getattr(self, name), str):
                raise ConfigError(f"{name} must be a string, got {getattr(self, name)!r}")
        if not self.ws_url.startswith(("ws://", "wss://")):
            raise ConfigError(f"ws_url must start with ws:// or wss://: {self.ws_url!r}")
        if not self.register_url.startswith(("http://", "https://")):
            raise ConfigError(f"register_url must start with http:// or https://: {self.register_url!r}")
        for name in ("ping_interval", "reconnect_delay_min", "open_timeout", "register_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.reconnect_delay_max < self.reconnect_delay_min:
            raise ConfigError("reconnect_delay_max must be >= reconnect_delay_min")
        if self.max_reconnect_attempts < 0:
            raise ConfigError("max_reconnect_attempts must be >= 0")
        if self.stale_multiplier <= 0 or self.health_check_multiplier <= 0:
            raise ConfigError("stale_multiplier and health_check_multiplier must be positive")

    @property
    def stale_after(self) -> float:
        return self.ping_interval * self.stale_multiplier

    @property
    def health_check_interval(self) -> float:
        return self.ping_interval * self.health_check_multiplier

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "AgentConfig":
        """Build a config from a flat mapping, ignoring ``None`` values."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        kwargs = {k: v for k, v in values.items() if v is not None}
        for required in ("ws_url", "register_url"):
            if not kwargs.get(required):
                raise ConfigError(f"{required} is required")
        try:
            return cls(**kwargs)
        except TypeError as e:
            raise ConfigError(str(e)) from e


def load_config_file(path: str | os.PathLike[str]) -> dict[str, Any]:
    """Load configuration from a YAML file. A missing file yields ``{}``."""
    p = Path(path).expanduser()
    if not p.exists():
        return {}
    obj = yaml.safe_load(p.read_text(encoding="utf-8"))
    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise ConfigError("Config root must be a mapping")
    return obj


def merge_config(cli_values: Mapping[str, Any], file_values: Mapping[str, Any]) -> AgentConfig:
    """File values override CLI/env values, matching the satellite daemon."""
    merged = dict(cli_values)
    merged.update(file_values)
    return AgentConfig.from_mapping(merged)
