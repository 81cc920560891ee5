"""Bounded pool of warehouse sessions keyed by normalized configuration.

Policy when capacity is exhausted: the caller waits up to ``acquire_timeout``
seconds for a release and then gets PoolExhaustedError. ``acquire_timeout=0``
fails immediately.

Bookkeeping happens under one asyncio.Condition and never awaits while a
count is half-updated. Connect and close calls run in the thread pool outside
it and are shielded from cancellation, so an aborted request neither strands
a reserved slot nor leaves a session open behind it.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable

from loguru import logger
from starlette.concurrency import run_in_threadpool

from ..config import ConnectionConfig, PoolKey
from ..errors import ConnectionFailedError, NotConnectedError, PoolExhaustedError, QueryError
from ..server_config import ServerConfigStore
from .drivers import WarehouseDriver

_ids = itertools.count(1)


class ConnectionState(str, Enum):
    IDLE = "IDLE"
    IN_USE = "IN_USE"
    BROKEN = "BROKEN"


@dataclass(eq=False)
class PooledConnection:
    """A live session handle owned by the pool."""

    handle: Any
    key: PoolKey
    created_at: float
    last_used_at: float
    state: ConnectionState = ConnectionState.IN_USE
    id: int = field(default_factory=lambda: next(_ids))

    def mark_broken(self) -> None:
        """Flag the session as unusable; the pool closes it on release."""
        self.state = ConnectionState.BROKEN

    @property
    def broken(self) -> bool:
        return self.state is ConnectionState.BROKEN

    def __repr__(self) -> str:
        return f"PooledConnection(id={self.id}, key={self.key}, state={self.state.value})"


@dataclass
class _PoolEntry:
    idle: deque[PooledConnection] = field(default_factory=deque)
    in_use: set[PooledConnection] = field(default_factory=set)
    opening: int = 0

    @property
    def size(self) -> int:
        return len(self.idle) + len(self.in_use) + self.opening


class ConnectionPool:
    """Hands out warehouse sessions and takes them back for reuse."""

    def __init__(
        self,
        driver: WarehouseDriver,
        config_store: ServerConfigStore | None = None,
        *,
        max_per_key: int = 4,
        max_total: int = 16,
        acquire_timeout: float = 10.0,
        idle_timeout: float = 300.0,
        max_lifetime: float = 3600.0,
        reap_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_per_key < 1 or max_total < 1:
            raise ValueError("Pool bounds must be at least 1")
        self.driver = driver
        self._config_store = config_store
        self.max_per_key = max_per_key
        self.max_total = max_total
        self.acquire_timeout = acquire_timeout
        self.idle_timeout = idle_timeout
        self.max_lifetime = max_lifetime
        self.reap_interval = reap_interval
        self._clock = clock
        self._entries: dict[PoolKey, _PoolEntry] = {}
        self._total = 0
        self._retired: set[PooledConnection] = set()
        self._cond: asyncio.Condition | None = None
        self._reaper: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        # Bumped by close_all; connections opened across a bump are retired
        self._generation = 0

    @property
    def _condition(self) -> asyncio.Condition:
        # Created lazily so the pool can be built before an event loop exists
        if self._cond is None:
            self._cond = asyncio.Condition()
        return self._cond

    def _resolve(self, config: ConnectionConfig | None) -> ConnectionConfig:
        if config is None and self._config_store is not None:
            config = self._config_store.get()
        if config is None:
            raise NotConnectedError()
        return config

    def _expired(self, conn: PooledConnection, now: float) -> bool:
        return now - conn.created_at >= self.max_lifetime

    def _idle_expired(self, conn: PooledConnection, now: float) -> bool:
        return self._expired(conn, now) or now - conn.last_used_at >= self.idle_timeout

    def _take_idle(self, entry: _PoolEntry, now: float, stale: list[PooledConnection]) -> PooledConnection | None:
        while entry.idle:
            conn = entry.idle.pop()
            if self._idle_expired(conn, now):
                self._total -= 1
                stale.append(conn)
                continue
            conn.state = ConnectionState.IN_USE
            conn.last_used_at = now
            entry.in_use.add(conn)
            return conn
        return None

    def _evict_lru_idle(self, exclude: PoolKey, stale: list[PooledConnection]) -> bool:
        """Close the least recently used idle connection of another key."""
        candidates = [
            (entry.idle[0].last_used_at, key)
            for key, entry in self._entries.items()
            if key != exclude and entry.idle
        ]
        if not candidates:
            return False
        _, key = min(candidates)
        stale.append(self._entries[key].idle.popleft())
        self._total -= 1
        return True

    def _has_capacity(self, entry: _PoolEntry) -> bool:
        return entry.size < self.max_per_key and self._total < self.max_total

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _wake_waiters(self) -> None:
        self._spawn(self._notify_waiters())

    async def _notify_waiters(self) -> None:
        async with self._condition:
            self._condition.notify_all()

    async def get_connection(self, config: ConnectionConfig | None = None) -> PooledConnection:
        """Borrow a connection for ``config`` (default: the stored server config)."""
        config = self._resolve(config)
        key = config.pool_key
        stale: list[PooledConnection] = []
        try:
            conn, generation = await self._checkout(key, stale)
        except BaseException:
            if stale:
                self._spawn(self._close_all(stale, reason="expired"))
            raise
        if stale:
            try:
                await asyncio.shield(self._spawn(self._close_all(stale, reason="expired")))
            except asyncio.CancelledError:
                self._abandon(key, conn)
                raise
        if conn is not None:
            return conn
        return await self._open(config, key, generation)

    async def _checkout(
        self, key: PoolKey, stale: list[PooledConnection]
    ) -> tuple[PooledConnection | None, int]:
        """Take an idle connection, or reserve a slot to open one (returned as None)."""
        deadline = time.monotonic() + self.acquire_timeout
        async with self._condition:
            while True:
                entry = self._entries.setdefault(key, _PoolEntry())
                conn = self._take_idle(entry, self._clock(), stale)
                if conn is not None:
                    logger.debug("Reusing connection {} for {}", conn.id, key)
                    return conn, self._generation
                if entry.size < self.max_per_key and self._total >= self.max_total:
                    self._evict_lru_idle(key, stale)
                if self._has_capacity(entry):
                    entry.opening += 1
                    self._total += 1
                    return None, self._generation
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning("Connection pool exhausted for {}", key)
                    raise PoolExhaustedError(
                        f"No connection available for {key} within {self.acquire_timeout}s "
                        f"(max_per_key={self.max_per_key}, max_total={self.max_total})"
                    )
                try:
                    await asyncio.wait_for(self._condition.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    pass

    def _abandon(self, key: PoolKey, conn: PooledConnection | None) -> None:
        """Undo a checkout whose caller was cancelled before receiving the connection.

        Runs without awaiting: nothing holds the condition across a suspension
        point, so these updates cannot interleave with another holder.
        """
        entry = self._entries[key]
        if conn is None:
            entry.opening -= 1
            self._total -= 1
        else:
            entry.in_use.discard(conn)
            if conn in self._retired:
                self._retired.discard(conn)
                self._total -= 1
                self._spawn(self._close_all([conn], reason="retired"))
            else:
                conn.state = ConnectionState.IDLE
                entry.idle.append(conn)
        self._prune()
        self._wake_waiters()

    async def _open(self, config: ConnectionConfig, key: PoolKey, generation: int) -> PooledConnection:
        connecting = self._spawn(run_in_threadpool(self.driver.connect, config))
        try:
            handle = await asyncio.shield(connecting)
        except asyncio.CancelledError:
            self._abandon(key, None)
            # The handshake keeps running in its thread; close whatever it yields
            connecting.add_done_callback(self._close_orphan)
            raise
        except Exception as exc:
            self._abandon(key, None)
            logger.error("Failed to open connection for {}: {}", key, exc)
            raise ConnectionFailedError.from_driver(exc) from exc
        now = self._clock()
        conn = PooledConnection(handle=handle, key=key, created_at=now, last_used_at=now)
        entry = self._entries[key]
        entry.opening -= 1
        entry.in_use.add(conn)
        if generation != self._generation:
            # close_all ran during the handshake
            self._retired.add(conn)
        logger.info("Opened connection {} for {}", conn.id, key)
        return conn

    def _close_orphan(self, connecting: asyncio.Future[Any]) -> None:
        if connecting.cancelled() or connecting.exception() is not None:
            return
        self._spawn(self._close_handle(connecting.result(), label="orphaned connection"))

    async def release(self, conn: PooledConnection) -> None:
        """Return a borrowed connection; broken or over-age ones are closed instead."""
        entry = self._entries.get(conn.key)
        if entry is None or conn not in entry.in_use:
            raise ValueError(f"{conn!r} is not on loan from this pool")
        entry.in_use.discard(conn)
        now = self._clock()
        discard = conn.broken or conn in self._retired or self._expired(conn, now)
        if discard:
            reason = "broken" if conn.broken else "retired"
            self._retired.discard(conn)
            self._total -= 1
            self._prune()
        else:
            conn.state = ConnectionState.IDLE
            conn.last_used_at = now
            entry.idle.append(conn)
        self._wake_waiters()
        if discard:
            await asyncio.shield(self._spawn(self._close_all([conn], reason=reason)))

    @asynccontextmanager
    async def connection(self, config: ConnectionConfig | None = None) -> AsyncIterator[PooledConnection]:
        """Borrow a connection for the duration of a block.

        The connection is marked broken when the block raises QueryError or is
        cancelled mid-statement, since the session state is then unknown.
        """
        conn = await self.get_connection(config)
        try:
            yield conn
        except (QueryError, asyncio.CancelledError):
            conn.mark_broken()
            raise
        finally:
            await self.release(conn)

    async def reap(self) -> int:
        """Close idle connections past idle_timeout or max_lifetime."""
        stale: list[PooledConnection] = []
        async with self._condition:
            now = self._clock()
            for entry in self._entries.values():
                keep = deque(conn for conn in entry.idle if not self._idle_expired(conn, now))
                stale.extend(conn for conn in entry.idle if conn not in keep)
                entry.idle = keep
            self._total -= len(stale)
            self._prune()
            if stale:
                self._condition.notify_all()
        if stale:
            await asyncio.shield(self._spawn(self._close_all(stale, reason="idle")))
        return len(stale)

    async def close_all(self) -> None:
        """Close idle connections now and retire on-loan ones for closing on release."""
        stale: list[PooledConnection] = []
        async with self._condition:
            self._generation += 1
            for entry in self._entries.values():
                stale.extend(entry.idle)
                entry.idle.clear()
                self._retired.update(entry.in_use)
            self._total -= len(stale)
            self._prune()
            self._condition.notify_all()
        if stale:
            await asyncio.shield(self._spawn(self._close_all(stale, reason="pool reset")))

    def _prune(self) -> None:
        for key in [key for key, entry in self._entries.items() if entry.size == 0]:
            del self._entries[key]

    async def _close_all(self, conns: Iterable[PooledConnection], *, reason: str) -> None:
        for conn in conns:
            conn.mark_broken()
            await self._close_handle(conn.handle, label=f"connection {conn.id} for {conn.key} ({reason})")

    async def _close_handle(self, handle: Any, *, label: str) -> None:
        try:
            await run_in_threadpool(self.driver.close, handle)
        except Exception as exc:
            logger.warning("Error closing {}: {}", label, exc)
        else:
            logger.info("Closed {}", label)

    def start(self) -> None:
        """Start the background reaper on the running event loop."""
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.get_running_loop().create_task(self._reap_forever(), name="qualytics-pool-reaper")

    async def _reap_forever(self) -> None:
        while True:
            await asyncio.sleep(self.reap_interval)
            try:
                evicted = await self.reap()
            except Exception:
                logger.exception("Connection reaper pass failed")
                continue
            if evicted:
                logger.debug("Reaper evicted {} idle connection(s)", evicted)

    async def stop(self) -> None:
        """Stop the reaper and close every idle connection."""
        if self._reaper is not None:
            self._reaper.cancel()
            try:
                await self._reaper
            except asyncio.CancelledError:
                pass
            self._reaper = None
        await self.close_all()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def stats(self) -> dict[str, Any]:
        keys = {
            str(key): {"idle": len(entry.idle), "inUse": len(entry.in_use), "opening": entry.opening}
            for key, entry in self._entries.items()
        }
        return {
            "total": self._total,
            "inUse": sum(item["inUse"] for item in keys.values()),
            "maxPerKey": self.max_per_key,
            "maxTotal": self.max_total,
            "keys": keys,
        }


__all__ = ["ConnectionPool", "ConnectionState", "PooledConnection"]
