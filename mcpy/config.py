"""
Configuration for mcpy
Environment-backed settings with optional .env loading
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}, using {default}")
        return default


@dataclass
class MCPyConfig:
    """Runtime settings for endpoints, arenas and logging"""
    # Resolution order for every field: explicit argument, then environment
    # (including values loaded from .env), then the default below.
    log_level: str = field(default_factory=lambda: os.getenv("MCPY_LOG_LEVEL", "INFO").upper())
    arena_batch_size: int = field(default_factory=lambda: _env_int("MCPY_ARENA_BATCH_SIZE", 128))
    # Reject requests other than initialize until the handshake completes
    strict_initialization: bool = field(default_factory=lambda: _env_flag("MCPY_STRICT_INITIALIZATION"))
    # Log sanitized message bodies at DEBUG level
    log_payloads: bool = field(default_factory=lambda: _env_flag("MCPY_LOG_PAYLOADS"))
    # Worker threads for inbound requests on bound transports. 0 handles them
    # on the transport's reader thread, where a handler awaiting a peer request
    # would block the only thread able to deliver the response
    max_workers: int = field(default_factory=lambda: _env_int("MCPY_MAX_WORKERS", 1))

    def __post_init__(self):
        if self.arena_batch_size <= 0:
            raise ValueError("arena_batch_size must be positive")
        if self.max_workers < 0:
            raise ValueError("max_workers must not be negative")


def load_config(dotenv_path: Optional[str] = None, **overrides) -> MCPyConfig:
    """Load .env (without overriding the real environment) and build a config"""
    load_dotenv(dotenv_path=dotenv_path)
    return MCPyConfig(**overrides)


# Global config instance
_config: Optional[MCPyConfig] = None


def get_config() -> MCPyConfig:
    """Get the process default config, loading it on first use"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config():
    """Forget the process default config"""
    global _config
    _config = None
