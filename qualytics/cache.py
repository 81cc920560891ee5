"""Short-lived in-memory cache for aggregate API responses."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping
from urllib.parse import urlencode

from loguru import logger


class CacheTTL:
    """TTL presets in seconds."""

    KPI_METRICS = 60
    REFERENCE_DATA = 300
    QUICK_METRICS = 30
    STATIC_DATA = 3600


@dataclass(slots=True)
class CacheEntry:
    key: str
    value: Any
    expires_at: float


def cache_key(endpoint: str, params: Mapping[str, Any] | None = None) -> str:
    """Build a cache key from an endpoint and every parameter that shapes its result.

    Parameters are sorted by name and percent-encoded, so two different
    parameter combinations never produce the same key. ``None`` values are
    treated as not supplied.
    """
    items = sorted((name, str(value)) for name, value in (params or {}).items() if value is not None)
    if not items:
        return endpoint
    return f"{endpoint}?{urlencode(items)}"


class ResponseCache:
    """TTL cache keyed by logical request identity.

    Expired entries are dropped lazily on lookup; there is no background
    sweep.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._store: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._store.get(key)
            if entry is not None and self._clock() >= entry.expires_at:
                del self._store[key]
                entry = None
        if entry is None:
            logger.debug("Cache MISS: {}", key)
            return default
        logger.debug("Cache HIT: {}", key)
        return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl!r}")
        with self._lock:
            self._store[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl)
        logger.debug("Cache SET: {} (ttl={}s)", key, ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
        logger.info("Response cache cleared")

    async def get_or_set(self, key: str, fetch: Callable[[], Awaitable[Any]], ttl: float) -> tuple[Any, bool]:
        """Return ``(value, cached)``, calling ``fetch`` only on a miss."""
        missing = object()
        value = self.get(key, missing)
        if value is not missing:
            return value, True
        value = await fetch()
        self.set(key, value, ttl)
        return value, False

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        with self._lock:
            keys = [key for key, entry in self._store.items() if now < entry.expires_at]
        return {"size": len(keys), "keys": sorted(keys)}

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        missing = object()
        return self.get(key, missing) is not missing

    def __len__(self) -> int:
        return self.stats()["size"]


__all__ = ["CacheEntry", "CacheTTL", "ResponseCache", "cache_key"]
