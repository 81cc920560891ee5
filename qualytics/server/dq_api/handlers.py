"""HTTP request handlers for the data-quality metrics API.

Handlers:
    overall_score: GET /api/dq/overall-score
    daily_summary: GET /api/dq/daily-summary
    datasets: GET /api/dq/datasets
    check_results: GET /api/dq/check-results
"""

from __future__ import annotations

import time
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from starlette.responses import JSONResponse

from ...cache import CacheTTL
from ...config import ConnectionConfig
from ...retry import retry_with_backoff
from .. import queries
from ..shared import Services, date_param, envelope, get_services, int_param, load_cached

if TYPE_CHECKING:
    from starlette.requests import Request


def _utc_now() -> datetime:
    """Naive UTC timestamp; look-back windows are measured against it."""
    return datetime.now(tz=timezone.utc).replace(tzinfo=None)


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _as_float(value: Any) -> float | None:
    return None if value is None else float(value)


async def _fetch_overall_score(services: Services, config: ConnectionConfig) -> dict[str, Any]:
    execute = services.executor.execute
    async with services.pool.connection(config) as conn:
        row = (await execute(conn, queries.OVERALL_SCORE_TODAY)).first()
        if row is None or row["OVERALL_DQ_SCORE"] is None:
            # No run yet today: fall back to the most recent summary date
            row = (await execute(conn, queries.OVERALL_SCORE_LATEST)).first()
        if row is None or row["OVERALL_DQ_SCORE"] is None:
            return {"overallScore": None, "previousScore": None, "scoreDifference": None, "summaryDate": None}
        summary_date = _as_date(row["SUMMARY_DATE"])
        previous_row = (
            await execute(conn, queries.SCORE_FOR_DATE, [summary_date - timedelta(days=1)])
        ).first()

    current = _as_float(row["OVERALL_DQ_SCORE"])
    previous = _as_float(previous_row["OVERALL_DQ_SCORE"]) if previous_row else None
    return {
        "overallScore": current,
        "previousScore": previous,
        "scoreDifference": round(current - previous, 1) if previous is not None else None,
        "summaryDate": summary_date,
    }


async def overall_score(request: "Request") -> JSONResponse:
    """Overall DQ score for today (or the latest summary date) and the day before.

    GET /api/dq/overall-score
    """
    services = get_services(request)

    async def fetch(config: ConnectionConfig) -> dict[str, Any]:
        return await _fetch_overall_score(services, config)

    payload = await load_cached(services, "/api/dq/overall-score", {}, CacheTTL.KPI_METRICS, fetch)
    return JSONResponse(payload)


async def daily_summary(request: "Request") -> JSONResponse:
    """Per-day averages and check totals for the last ``days`` days.

    GET /api/dq/daily-summary?days=N
    """
    services = get_services(request)
    days = int_param(request, "days", 7, minimum=1, maximum=365)
    since = _utc_now().date() - timedelta(days=days)

    async def fetch(config: ConnectionConfig) -> list[dict[str, Any]]:
        async with services.pool.connection(config) as conn:
            result = await services.executor.execute(conn, queries.DAILY_SUMMARY, [since])
        return result.records()

    payload = await load_cached(
        services, "/api/dq/daily-summary", {"days": days}, CacheTTL.QUICK_METRICS, fetch
    )
    return JSONResponse(payload)


async def datasets(request: "Request") -> JSONResponse:
    """Staging tables registered as monitored datasets.

    GET /api/dq/datasets
    """
    services = get_services(request)

    async def fetch(config: ConnectionConfig) -> list[str]:
        view = queries.information_schema_view(queries.DATASET_DATABASE, "TABLES")
        async with services.pool.connection(config) as conn:
            result = await services.executor.execute(
                conn,
                queries.LIST_DATASETS,
                [view, queries.DATASET_SCHEMA, queries.DATASET_TABLE_PATTERN],
            )
        return [row[0] for row in result.rows if row[0]]

    payload = await load_cached(services, "/api/dq/datasets", {}, CacheTTL.REFERENCE_DATA, fetch)
    return JSONResponse(payload)


async def check_results(request: "Request") -> JSONResponse:
    """Individual check results, newest first.

    GET /api/dq/check-results

    Query Parameters:
        days: Look-back window in days (default 7, at most 365)
        since: Start date (YYYY-MM-DD); overrides days
        limit: Maximum rows (default 100, at most 1000)
        runId, tableName, status: Optional exact-match filters
    """
    services = get_services(request)
    days = int_param(request, "days", 7, minimum=1, maximum=365)
    limit = int_param(request, "limit", 100, minimum=1, maximum=1000)
    since = date_param(request, "since")
    config = services.server_config.require()

    filters: list[str] = []
    binds: list[Any] = []
    if since is not None:
        binds.append(datetime.combine(since, datetime.min.time()))
    else:
        binds.append(_utc_now() - timedelta(days=days))
    for name in queries.CHECK_RESULT_FILTERS:
        value = (request.query_params.get(name) or "").strip()
        if value:
            filters.append(name)
            binds.append(value)
    binds.append(limit)
    sql = queries.check_results_query(filters)

    async def fetch() -> list[dict[str, Any]]:
        async with services.pool.connection(config) as conn:
            result = await services.executor.execute(conn, sql, binds)
        return result.records()

    started = time.perf_counter()
    records = await retry_with_backoff(fetch, context="/api/dq/check-results")
    query_time_ms = int((time.perf_counter() - started) * 1000)
    return JSONResponse(envelope(records, query_time_ms=query_time_ms))
