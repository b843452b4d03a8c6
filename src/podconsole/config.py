from __future__ import annotations

import os
from typing import Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator, model_validator

from podconsole.utils import float_env, int_env

DEFAULT_SOCKET_DIR = "/run/kuasar"
DEFAULT_SOCKET_NAME = "task.socket"
DEFAULT_DEBUG_PORT = 1025

# Environment variables consulted by load_config().
ENV_SOCKET_DIR = "PODCONSOLE_SOCKET_DIR"
ENV_PORT = "PODCONSOLE_PORT"
ENV_HANDSHAKE_TIMEOUT = "PODCONSOLE_HANDSHAKE_TIMEOUT"
ENV_POLL_INTERVAL = "PODCONSOLE_POLL_INTERVAL"


class ConsoleConfig(BaseModel):
    socket_dir: str = Field(default=DEFAULT_SOCKET_DIR)
    socket_name: str = Field(default=DEFAULT_SOCKET_NAME)
    port: int = Field(default=DEFAULT_DEBUG_PORT)
    handshake_timeout: float = Field(default=5.0)
    handshake_retries: int = Field(default=10)
    handshake_retry_delay: float = Field(default=0.1)
    poll_interval: float = Field(default=0.25)
    upstream_chunk: int = Field(default=1024)
    downstream_chunk: int = Field(default=4096)
    max_command_length: int = Field(default=4096)

    @field_validator("socket_name")
    @classmethod
    def _validate_socket_name(cls, value: str) -> str:
        """The socket name is a single path component."""
        if not value or os.sep in value or value in (".", ".."):
            raise ValueError(f"Invalid socket name: {value!r}")
        return value

    @field_validator("port")
    @classmethod
    def _validate_port(cls, value: int) -> int:
        """Ports are unsigned 32-bit integers."""
        if not isinstance(value, int) or value < 0 or value > 0xFFFFFFFF:
            raise ValueError("port must be an unsigned 32-bit integer")
        return value

    @field_validator("handshake_timeout", "poll_interval")
    @classmethod
    def _validate_positive_float(cls, value: float) -> float:
        """Validate timeouts are strictly positive."""
        if value <= 0:
            raise ValueError("Value must be positive")
        return value

    @field_validator("handshake_retry_delay")
    @classmethod
    def _validate_non_negative_float(cls, value: float) -> float:
        if value < 0:
            raise ValueError("handshake_retry_delay must not be negative")
        return value

    @field_validator(
        "handshake_retries",
        "upstream_chunk",
        "downstream_chunk",
        "max_command_length",
    )
    @classmethod
    def _validate_positive_int(cls, value: int) -> int:
        """Validate positive integer fields."""
        if not isinstance(value, int) or value <= 0:
            raise ValueError("Value must be a positive integer")
        return value

    @model_validator(mode="after")
    def _check_poll_interval(self) -> "ConsoleConfig":
        """Cancellation must be observed well within the handshake deadline."""
        if self.poll_interval >= 1.0:
            raise ValueError("poll_interval must be sub-second")
        return self


def default_config() -> ConsoleConfig:
    """Build the default ConsoleConfig."""
    return ConsoleConfig()


def apply_overrides(
    config: ConsoleConfig,
    *,
    socket_dir: Optional[str] = None,
    port: Optional[int] = None,
) -> ConsoleConfig:
    """Apply command-line overrides to a base config."""
    data = config.model_dump(mode="json")
    if socket_dir:
        data["socket_dir"] = socket_dir
    if port is not None:
        data["port"] = port
    return ConsoleConfig.model_validate(data)


def coerce_config(payload: Optional[Dict[str, Any]]) -> ConsoleConfig:
    """Coerce a loose dict payload into a validated ConsoleConfig."""
    base = default_config()
    if not isinstance(payload, dict):
        return base

    data = base.model_dump(mode="json")
    # Only apply known fields.
    for key in ConsoleConfig.model_fields:
        if key in payload and payload[key] is not None:
            data[key] = payload[key]
    return ConsoleConfig.model_validate(data)


def load_config() -> ConsoleConfig:
    """Build a config from defaults and PODCONSOLE_* environment variables."""
    base = default_config()
    payload: Dict[str, Any] = {
        "socket_dir": os.environ.get(ENV_SOCKET_DIR) or base.socket_dir,
        "port": int_env(ENV_PORT, base.port),
        "handshake_timeout": float_env(ENV_HANDSHAKE_TIMEOUT, base.handshake_timeout),
        "poll_interval": float_env(ENV_POLL_INTERVAL, base.poll_interval),
    }
    return coerce_config(payload)
