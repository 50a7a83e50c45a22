import json
import logging
import socket
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

DEFAULT_TEMPLATES_DIR = Path(__file__).resolve().parent.parent.parent / "responses"


# =============================================================================
# Errors
# =============================================================================

class RelayError(Exception):
    """Base class for everything that can end a relay session."""


class RelayIOError(RelayError):
    """A socket read, write or connect failed, or a template could not be read."""


class Utf8DecodeError(RelayError):
    """A chunk read off a socket was not valid UTF-8."""


class PortParseError(RelayError):
    """The port part of the host specifier is not an unsigned 16-bit integer."""


class NoHostFound(RelayError):
    """No usable host in the request, or the host resolved to nothing."""


class ResolutionError(RelayError):
    """The resolver itself failed for the host."""


class SelfRequested(RelayError):
    """The request targets the proxy's own listening address."""


class ConfigError(ValueError):
    """Invalid configuration input."""


# =============================================================================
# Core Types & Configuration
# =============================================================================

class SessionState(Enum):
    ACCEPTED = "accepted"
    READING = "reading"
    ROUTING = "routing"
    RESOLVED = "resolved"
    LOOPED = "looped"
    RELAYING = "relaying"
    CLOSED = "closed"


@dataclass(frozen=True)
class HostTarget:
    host: str
    port: int = 80

    def __str__(self):
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class ResolvedAddress:
    ip: str
    port: int

    def as_tuple(self) -> Tuple[str, int]:
        return (self.ip, self.port)

    def __str__(self):
        if ":" in self.ip:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


@dataclass
class Session:
    client_socket: socket.socket
    client_addr: Tuple[str, int]
    server_address: Tuple[str, int]
    connection_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    start_time: datetime = field(default_factory=datetime.now)
    state: SessionState = SessionState.ACCEPTED
    request: Optional[str] = None

    def elapsed(self) -> float:
        """Seconds since the connection was accepted."""
        return (datetime.now() - self.start_time).total_seconds()


@dataclass
class RelayConfig:
    """
    Settings for one proxy process.

    Attributes:
        listening_addr: Address the proxy binds to
        listening_port: Port the proxy binds to (0 picks a free port)
        chunk_size: Bytes per socket read when draining a stream
        templates_dir: Directory holding the canned ``<name>.http`` responses
        connect_timeout: Seconds to wait for an upstream connect, None waits forever
        backlog: Listen queue length
        log_level: Name of the logging level
        log_file: Optional path for a rotating log file
    """
    listening_addr: str = "127.0.0.1"
    listening_port: int = 8080
    chunk_size: int = 1024
    templates_dir: str = str(DEFAULT_TEMPLATES_DIR)
    connect_timeout: Optional[float] = None
    backlog: int = 100
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self):
        if not 0 <= self.listening_port <= 65535:
            raise ConfigError(f"listening_port out of range: {self.listening_port}")
        if self.chunk_size <= 0:
            raise ConfigError(f"chunk_size must be positive: {self.chunk_size}")
        if self.connect_timeout is not None and self.connect_timeout <= 0:
            raise ConfigError(f"connect_timeout must be positive: {self.connect_timeout}")
        if self.backlog <= 0:
            raise ConfigError(f"backlog must be positive: {self.backlog}")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigError(f"unknown log_level: {self.log_level}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelayConfig":
        """Build a config from a plain dict, rejecting unknown keys and bad types."""
        if not isinstance(data, dict):
            raise ConfigError("config must be a JSON object")

        known = {f.name: f for f in fields(cls)}
        unknown = set(data) - set(known)
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(sorted(unknown))}")

        kwargs = {}
        for key, value in data.items():
            kwargs[key] = _coerce(key, value)
        return cls(**kwargs)

    @property
    def bind_address(self) -> Tuple[str, int]:
        return (self.listening_addr, self.listening_port)


_INT_KEYS = {"listening_port", "chunk_size", "backlog"}
_STR_KEYS = {"listening_addr", "templates_dir", "log_level"}


def _coerce(key: str, value: Any) -> Any:
    if key in _INT_KEYS:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{key} must be an integer, got {value!r}")
        return value
    if key in _STR_KEYS:
        if not isinstance(value, str):
            raise ConfigError(f"{key} must be a string, got {value!r}")
        return value
    if key == "connect_timeout":
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"connect_timeout must be a number, got {value!r}")
        return float(value)
    # log_file
    if value is not None and not isinstance(value, str):
        raise ConfigError(f"{key} must be a string, got {value!r}")
    return value


def load_config(path: str) -> RelayConfig:
    """
    Load a RelayConfig from a JSON file.

    Args:
        path: Path to a file containing a single JSON object

    Returns:
        RelayConfig built from the file's keys

    Raises:
        ConfigError: The file cannot be read, is not JSON, or has bad keys
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigError(f"config {path} is not UTF-8 text: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"config {path} is not valid JSON: {e}") from e
    return RelayConfig.from_dict(data)
