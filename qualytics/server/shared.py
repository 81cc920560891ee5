"""Shared state and utilities for the Qualytics server.

This module contains:
- ServerError exception class for request validation failures
- Services: the process-wide config store, pool, executor and cache
- Query-parameter helpers used across route handlers
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from ..cache import ResponseCache, cache_key
from ..config import ConnectionConfig, Settings
from ..connector import ConnectionPool, QueryExecutor, WarehouseDriver, build_driver
from ..retry import retry_with_backoff
from ..server_config import ServerConfigStore

if TYPE_CHECKING:
    from starlette.requests import Request


@dataclass
class ServerError(Exception):
    """Exception raised for request errors with HTTP status code and error code."""

    status_code: int
    code: str
    message: str


@dataclass
class Services:
    settings: Settings
    server_config: ServerConfigStore
    pool: ConnectionPool
    executor: QueryExecutor
    cache: ResponseCache


def build_services(settings: Settings, driver: WarehouseDriver | None = None) -> Services:
    driver = driver or build_driver(settings)
    server_config = ServerConfigStore()
    pool = ConnectionPool(
        driver,
        server_config,
        max_per_key=settings.max_per_key,
        max_total=settings.max_total,
        acquire_timeout=settings.acquire_timeout,
        idle_timeout=settings.idle_timeout,
        max_lifetime=settings.max_lifetime,
        reap_interval=settings.reap_interval,
    )
    return Services(
        settings=settings,
        server_config=server_config,
        pool=pool,
        executor=QueryExecutor(driver),
        cache=ResponseCache(),
    )


def get_services(request: "Request") -> Services:
    return request.app.state.services


def int_param(request: "Request", name: str, default: int, *, minimum: int, maximum: int) -> int:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ServerError(status_code=400, code="VALIDATION_ERROR", message=f"'{name}' must be an integer") from None
    if not minimum <= value <= maximum:
        raise ServerError(
            status_code=400,
            code="VALIDATION_ERROR",
            message=f"'{name}' must be between {minimum} and {maximum}",
        )
    return value


def date_param(request: "Request", name: str) -> date | None:
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ServerError(
            status_code=400, code="VALIDATION_ERROR", message=f"'{name}' must be a date (YYYY-MM-DD)"
        ) from None


def required_param(request: "Request", name: str) -> str:
    value = (request.query_params.get(name) or "").strip()
    if not value:
        raise ServerError(status_code=400, code="MISSING_PARAMETER", message=f"Missing required parameter: {name}")
    return value


def jsonable(value: Any) -> Any:
    """Convert warehouse values (dates, decimals) into JSON-friendly ones."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: jsonable(item) for key, item in value.items()}
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    # Decimal and other numeric wrappers
    try:
        return float(value)
    except (TypeError, ValueError):
        return str(value)


async def load_cached(
    services: Services,
    endpoint: str,
    params: dict[str, Any],
    ttl: float,
    fetch: Callable[[ConnectionConfig], Awaitable[Any]],
) -> dict[str, Any]:
    """Serve ``endpoint`` from the response cache, running ``fetch`` on a miss.

    The key covers the request parameters and the active connection, so
    switching database or account never serves another context's data.
    """
    config = services.server_config.require()
    key = cache_key(endpoint, {**params, "connection": str(config.pool_key)})
    started = time.perf_counter()

    async def load() -> Any:
        data = await retry_with_backoff(lambda: fetch(config), context=endpoint)
        return jsonable(data)

    data, cached = await services.cache.get_or_set(key, load, ttl)
    query_time_ms = 0 if cached else int((time.perf_counter() - started) * 1000)
    return envelope(data, cached=cached, query_time_ms=query_time_ms)


def envelope(data: Any, *, cached: bool = False, query_time_ms: int | None = None) -> dict[str, Any]:
    return {
        "success": True,
        "data": jsonable(data),
        "metadata": {
            "cached": cached,
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "queryTime": query_time_ms or 0,
        },
    }
