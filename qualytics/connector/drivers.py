"""Warehouse drivers: the blocking connect/execute/close capability the pool wraps."""

from __future__ import annotations

import re
import threading
from typing import Any, Protocol, Sequence, runtime_checkable

import duckdb
import snowflake.connector
import sqlglot
import sqlglot.errors
from loguru import logger
from sqlglot.tokens import TokenType

from ..config import ConnectionConfig, Settings
from ..errors import QueryError
from .macros import register_session_macros, sql_literal

Columns = tuple[str, ...]
Rows = list[tuple[Any, ...]]

_RELATION_MARKER = "QUALYTICS_RELATION_{}"
_RELATION_PATTERN = re.compile(r"\bQUALYTICS_RELATION_(\d+)\b")

# Snowflake-shaped INFORMATION_SCHEMA views over DuckDB's own catalog.
# Storage figures are not tracked locally and come back NULL.
_CATALOG_VIEWS = {
    "SCHEMATA": """(
        SELECT catalog_name AS CATALOG_NAME, schema_name AS SCHEMA_NAME
        FROM system.information_schema.schemata
        WHERE upper(catalog_name) = {database}
    )""",
    "TABLES": """(
        SELECT
            table_catalog AS TABLE_CATALOG,
            table_schema AS TABLE_SCHEMA,
            table_name AS TABLE_NAME,
            table_type AS TABLE_TYPE,
            CAST(NULL AS BIGINT) AS ROW_COUNT,
            CAST(NULL AS BIGINT) AS BYTES,
            CAST(NULL AS TIMESTAMP) AS LAST_ALTERED
        FROM system.information_schema.tables
        WHERE upper(table_catalog) = {database}
    )""",
}


@runtime_checkable
class WarehouseDriver(Protocol):
    """Blocking driver calls; callers run them off the event loop."""

    def connect(self, config: ConnectionConfig) -> Any:
        """Open an authenticated session and return its handle."""

    def execute(self, handle: Any, sql: str, params: Sequence[Any] | None) -> tuple[Columns, Rows]:
        """Run one statement with positional binds and return columns and rows."""

    def close(self, handle: Any) -> None:
        """Close the session."""


class SnowflakeDriver:
    """Driver backed by snowflake-connector-python."""

    def __init__(self, *, login_timeout: int = 30, query_tag: str = "qualytics") -> None:
        self._login_timeout = login_timeout
        self._query_tag = query_tag

    def connect_params(self, config: ConnectionConfig) -> dict[str, Any]:
        params: dict[str, Any] = {
            "account": config.resolved_account,
            "user": config.username,
            "password": config.secret,
            # Every statement in this package uses ``?`` placeholders
            "paramstyle": "qmark",
            "login_timeout": self._login_timeout,
            "session_parameters": {"QUERY_TAG": self._query_tag},
        }
        # Context is fixed at connect time; the pool key already separates contexts
        for name in ("warehouse", "database", "schema", "role"):
            value = getattr(config, name)
            if value:
                params[name] = value
        return params

    def connect(self, config: ConnectionConfig) -> snowflake.connector.SnowflakeConnection:
        return snowflake.connector.connect(**self.connect_params(config))

    def execute(
        self,
        handle: snowflake.connector.SnowflakeConnection,
        sql: str,
        params: Sequence[Any] | None,
    ) -> tuple[Columns, Rows]:
        with handle.cursor() as cur:
            cur.execute(sql, params)
            description = cur.description or []
            columns = tuple(str(col[0]) for col in description)
            rows = [tuple(row) for row in cur.fetchall()] if description else []
        return columns, rows

    def close(self, handle: snowflake.connector.SnowflakeConnection) -> None:
        handle.close()


class DuckDBDriver:
    """Local stand-in warehouse for development and tests.

    All handles share one DuckDB database (as sessions on one Snowflake
    account share its data); each handle is its own DuckDB cursor.
    Statements are written in Snowflake SQL and transpiled with sqlglot.
    """

    def __init__(self, db_file: str = ":memory:") -> None:
        self._db_file = db_file
        self._duck_conn: duckdb.DuckDBPyConnection | None = duckdb.connect(database=db_file)
        self._lock = threading.Lock()

    @property
    def database(self) -> duckdb.DuckDBPyConnection:
        """The shared DuckDB connection (used to seed local data)."""
        if self._duck_conn is None:
            raise RuntimeError("DuckDB driver has been shut down")
        return self._duck_conn

    def connect(self, config: ConnectionConfig) -> duckdb.DuckDBPyConnection:
        with self._lock:
            cursor = self.database.cursor()
        register_session_macros(cursor, config)
        return cursor

    def execute(
        self,
        handle: duckdb.DuckDBPyConnection,
        sql: str,
        params: Sequence[Any] | None,
    ) -> tuple[Columns, Rows]:
        sql, params, relations = self.bind_identifiers(sql, params)
        statement = self.transpile(sql)
        if relations:
            statement = _RELATION_PATTERN.sub(lambda m: relations[int(m.group(1))], statement)
        if params:
            handle.execute(statement, list(params))
        else:
            handle.execute(statement)
        description = handle.description or []
        columns = tuple(str(col[0]) for col in description)
        rows = [tuple(row) for row in handle.fetchall()] if description else []
        return columns, rows

    def close(self, handle: duckdb.DuckDBPyConnection) -> None:
        handle.close()

    def shutdown(self) -> None:
        if self._duck_conn is not None:
            self._duck_conn.close()
            self._duck_conn = None

    @staticmethod
    def transpile(sql: str) -> str:
        try:
            statements = sqlglot.transpile(sql, read="snowflake", write="duckdb")
        except sqlglot.errors.SqlglotError as exc:
            message = str(exc).replace("\x1b[4m", "").replace("\x1b[0m", "")
            raise QueryError.syntax(message) from None
        if len(statements) != 1:
            raise QueryError.syntax("Exactly one statement per call is supported.", sqlstate="42601")
        return statements[0]

    @staticmethod
    def bind_identifiers(
        sql: str, params: Sequence[Any] | None
    ) -> tuple[str, list[Any], list[str]]:
        """Resolve ``IDENTIFIER(?)`` binds, which DuckDB has no syntax for.

        Each one is swapped for a marker the transpiler passes through and
        its bind is dropped from ``params``. The returned relations replace
        the markers afterwards: quoted names, or a local rendition of
        ``<db>.INFORMATION_SCHEMA.SCHEMATA`` and ``.TABLES``.
        """
        binds = list(params or ())
        try:
            tokens = sqlglot.tokenize(sql, read="snowflake")
        except sqlglot.errors.TokenError as exc:
            raise QueryError.syntax(str(exc)) from None

        spans: list[tuple[int, int]] = []
        relations: list[str] = []
        taken: list[int] = []
        position = 0
        for index, token in enumerate(tokens):
            if token.token_type != TokenType.PLACEHOLDER:
                continue
            if (
                index >= 2
                and index + 1 < len(tokens)
                and tokens[index - 2].text.upper() == "IDENTIFIER"
                and tokens[index - 1].token_type == TokenType.L_PAREN
                and tokens[index + 1].token_type == TokenType.R_PAREN
            ):
                if position >= len(binds):
                    raise QueryError.syntax("IDENTIFIER(?) has no bind value.")
                spans.append((tokens[index - 2].start, tokens[index + 1].end + 1))
                relations.append(_relation_for(binds[position]))
                taken.append(position)
            position += 1

        for number in range(len(spans) - 1, -1, -1):
            start, end = spans[number]
            sql = sql[:start] + _RELATION_MARKER.format(number) + sql[end:]
        remaining = [value for i, value in enumerate(binds) if i not in taken]
        return sql, remaining, relations


def _relation_for(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise QueryError.syntax(f"IDENTIFIER() needs an object name, got {name!r}.")
    parts = [part.strip('"') for part in name.split(".")]
    if len(parts) == 3 and parts[1].upper() == "INFORMATION_SCHEMA":
        view = _CATALOG_VIEWS.get(parts[2].upper())
        if view is not None:
            return view.format(database=sql_literal(parts[0].upper()))
    return ".".join('"' + part.replace('"', '""') + '"' for part in parts)


def build_driver(settings: Settings) -> WarehouseDriver:
    if settings.driver == "duckdb":
        logger.info("Using local DuckDB warehouse at {}", settings.duckdb_path)
        return DuckDBDriver(settings.duckdb_path)
    return SnowflakeDriver(login_timeout=settings.login_timeout)


__all__ = [
    "Columns",
    "DuckDBDriver",
    "Rows",
    "SnowflakeDriver",
    "WarehouseDriver",
    "build_driver",
]
