"""HTTP request handlers for the connection API.

Handlers:
    connect: POST /api/snowflake/connect
    disconnect: POST /api/snowflake/disconnect
    status: GET /api/snowflake/status
    list_databases: GET /api/snowflake/databases
    list_schemas: GET /api/snowflake/schemas
    list_tables: GET /api/snowflake/tables
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from loguru import logger
from starlette.responses import JSONResponse

from ...cache import CacheTTL
from ...config import ConnectionConfig
from .. import queries
from ..shared import ServerError, get_services, jsonable, load_cached, required_param

if TYPE_CHECKING:
    from starlette.requests import Request


async def connect(request: "Request") -> JSONResponse:
    """Test the supplied credentials and store them for later requests.

    POST /api/snowflake/connect

    Request Body:
        accountUrl or account: Account URL or identifier
        username: User name
        password or token: Secret
        warehouse, database, schema, role: Optional session context
    """
    services = get_services(request)
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ServerError(status_code=400, code="VALIDATION_ERROR", message="Request body must be JSON") from None

    config = ConnectionConfig.from_mapping(body).validate()

    async with services.pool.connection(config) as conn:
        result = await services.executor.execute(conn, queries.CONNECTION_TEST)

    services.server_config.set(config)
    # Cached payloads belong to the previous connection context
    services.cache.clear()
    logger.info("Connected to Snowflake as {}", config.pool_key)

    return JSONResponse(
        {
            "success": True,
            "message": "Connection successful! Select warehouse, database, and schema to start.",
            "data": jsonable(result.to_dict()),
        }
    )


async def disconnect(request: "Request") -> JSONResponse:
    """Close pooled sessions and forget the stored credentials.

    POST /api/snowflake/disconnect
    """
    services = get_services(request)
    await services.pool.close_all()
    services.server_config.clear()
    services.cache.clear()
    return JSONResponse({"success": True, "message": "Disconnected from Snowflake"})


async def status(request: "Request") -> JSONResponse:
    """Report whether credentials are stored, without exposing secrets.

    GET /api/snowflake/status
    """
    services = get_services(request)
    config = services.server_config.get()
    return JSONResponse(
        {
            "success": True,
            "isConnected": config is not None,
            "config": config.public_view() if config else None,
            # Per-key breakdowns name the user, so only totals are reported here
            "pool": {name: value for name, value in services.pool.stats().items() if name != "keys"},
            "cache": {"size": len(services.cache)},
        }
    )


async def list_databases(request: "Request") -> JSONResponse:
    """GET /api/snowflake/databases"""
    services = get_services(request)

    async def fetch(config: ConnectionConfig) -> list[Any]:
        async with services.pool.connection(config) as conn:
            result = await services.executor.execute(conn, queries.SHOW_DATABASES)
        # SHOW output column names are lower case
        return [record.get("name") for record in result.records() if record.get("name")]

    payload = await load_cached(services, "/api/snowflake/databases", {}, CacheTTL.REFERENCE_DATA, fetch)
    return JSONResponse(payload)


async def list_schemas(request: "Request") -> JSONResponse:
    """GET /api/snowflake/schemas?database=NAME"""
    services = get_services(request)
    database = queries.validate_identifier(required_param(request, "database"), name="database")

    async def fetch(config: ConnectionConfig) -> list[Any]:
        view = queries.information_schema_view(database, "SCHEMATA")
        async with services.pool.connection(config) as conn:
            result = await services.executor.execute(conn, queries.LIST_SCHEMAS, [view])
        return [row[0] for row in result.rows if row[0]]

    payload = await load_cached(
        services, "/api/snowflake/schemas", {"database": database}, CacheTTL.REFERENCE_DATA, fetch
    )
    return JSONResponse(payload)


async def list_tables(request: "Request") -> JSONResponse:
    """GET /api/snowflake/tables?database=NAME&schema=NAME"""
    services = get_services(request)
    database = queries.validate_identifier(required_param(request, "database"), name="database")
    schema = queries.validate_identifier(required_param(request, "schema"), name="schema")

    async def fetch(config: ConnectionConfig) -> list[dict[str, Any]]:
        view = queries.information_schema_view(database, "TABLES")
        async with services.pool.connection(config) as conn:
            result = await services.executor.execute(conn, queries.LIST_TABLES, [view, schema])
        return result.records()

    payload = await load_cached(
        services,
        "/api/snowflake/tables",
        {"database": database, "schema": schema},
        CacheTTL.REFERENCE_DATA,
        fetch,
    )
    return JSONResponse(payload)
