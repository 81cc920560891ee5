"""Process-wide slot for the active warehouse configuration."""

from __future__ import annotations

import threading

from loguru import logger

from .config import ConnectionConfig
from .errors import NotConnectedError


class ServerConfigStore:
    """Holds the most recently validated ConnectionConfig.

    The dashboard serves a single operator connected to one warehouse account
    at a time, so there is exactly one slot rather than one per browser
    session. ``set`` replaces the previous value outright. Nothing is
    persisted; a restart starts empty.
    """

    def __init__(self) -> None:
        self._config: ConnectionConfig | None = None
        self._lock = threading.Lock()

    def set(self, config: ConnectionConfig) -> None:
        """Store ``config`` as the active configuration (last write wins)."""
        if not isinstance(config, ConnectionConfig):
            raise TypeError(f"Expected ConnectionConfig, got {type(config).__name__}")
        with self._lock:
            self._config = config
        logger.info("Server config stored for {}", config.pool_key)

    def get(self) -> ConnectionConfig | None:
        """Return the active configuration, or None when nothing is stored."""
        with self._lock:
            return self._config

    def has(self) -> bool:
        """Check whether a configuration is stored."""
        with self._lock:
            return self._config is not None

    def require(self) -> ConnectionConfig:
        config = self.get()
        if config is None:
            raise NotConnectedError()
        return config

    def clear(self) -> None:
        with self._lock:
            self._config = None
        logger.info("Server config cleared")


__all__ = ["ServerConfigStore"]
