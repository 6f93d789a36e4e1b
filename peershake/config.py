"""
Configuration for a handshake attempt.

Defaults are merged with environment overrides prefixed with ``PEERSHAKE_``
and then with explicit overrides (the command line), in that order.
"""

from __future__ import annotations

import math
import os
from dataclasses import asdict, dataclass, fields
from typing import Any

from peershake.errors import ConfigError
from peershake.network import DEFAULT_NETWORK, get_network

PROTOCOL_VERSION = 70016  # matches bitcoin core v24
MIN_PROTOCOL_VERSION = 70001  # BIP37, first version with the relay flag
USER_AGENT = "/peershake:0.1.0/"
ENV_PREFIX = "PEERSHAKE_"


@dataclass(slots=True)
class HandshakeConfig:
    network: str = DEFAULT_NETWORK
    protocol_version: int = PROTOCOL_VERSION
    min_version: int = MIN_PROTOCOL_VERSION
    services: int = 0
    user_agent: str = USER_AGENT
    start_height: int = 0
    relay: bool = False
    timeout: float = 5.0
    read_timeout: float = 5.0
    connect_timeout: float = 5.0

    def validate(self) -> None:
        get_network(self.network)
        if not (-(2**31) <= self.protocol_version < 2**31):
            raise ConfigError(f"Invalid protocol version {self.protocol_version}")
        if self.min_version > self.protocol_version:
            raise ConfigError("min_version must be <= protocol_version")
        if not (0 <= self.services < 2**64):
            raise ConfigError(f"Invalid services bitfield {self.services}")
        if not (-(2**31) <= self.start_height < 2**31):
            raise ConfigError(f"Invalid start height {self.start_height}")
        for name in ("timeout", "read_timeout", "connect_timeout"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise ConfigError(f"{name} must be a finite number > 0")

    def get_network(self):
        return get_network(self.network)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def load_config(overrides: dict[str, Any] | None = None, *, environ=None) -> HandshakeConfig:
    """Build a validated config from defaults, environment and overrides."""

    if environ is None:
        environ = os.environ
    config = HandshakeConfig()
    known = {f.name for f in fields(config)}
    values: dict[str, Any] = {}
    # unrelated PEERSHAKE_ variables (log settings) are skipped
    for key, value in environ.items():
        if key.startswith(ENV_PREFIX):
            name = key[len(ENV_PREFIX) :].lower()
            if name in known:
                values[name] = value
    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = value

    for key, value in values.items():
        if key not in known:
            raise ConfigError(f"Unknown config field {key}")
        setattr(config, key, _coerce_value(getattr(config, key), value))
    config.validate()
    return config


def _coerce_value(current: Any, value: Any) -> Any:
    target_type = type(current)
    if target_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in {"1", "true", "yes"}:
                return True
            if normalized in {"0", "false", "no"}:
                return False
            raise ConfigError(f"Invalid boolean value {value}")
        raise ConfigError(f"Cannot coerce {value!r} to bool")
    if target_type is int:
        try:
            # accepts hex for the services bitfield
            return int(value, 0) if isinstance(value, str) else int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid numeric value {value!r}") from exc
    if target_type is float:
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid numeric value {value!r}") from exc
    if target_type is str:
        return str(value)
    return value
