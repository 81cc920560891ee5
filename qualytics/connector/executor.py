"""Uniform statement execution over pooled connections."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Sequence

from loguru import logger
from sqlglot import tokenize
from sqlglot.errors import TokenError
from sqlglot.tokens import TokenType
from starlette.concurrency import run_in_threadpool

from ..errors import QueryError
from .drivers import WarehouseDriver
from .pool import PooledConnection


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Normalized statement output."""

    columns: tuple[str, ...]
    rows: tuple[tuple[Any, ...], ...]
    row_count: int
    elapsed_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "columns": list(self.columns),
            "rows": [list(row) for row in self.rows],
            "rowCount": self.row_count,
        }

    def records(self) -> list[dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]

    def first(self) -> dict[str, Any] | None:
        if not self.rows:
            return None
        return dict(zip(self.columns, self.rows[0]))


def count_placeholders(sql: str) -> int:
    """Count ``?`` bind markers, ignoring any inside literals or comments.

    Raises QueryError when the text cannot be tokenized (an unterminated
    string or comment, for instance).
    """
    try:
        tokens = tokenize(sql, read="snowflake")
    except TokenError as exc:
        raise QueryError.syntax(str(exc)) from None
    return sum(1 for token in tokens if token.token_type == TokenType.PLACEHOLDER)


class QueryExecutor:
    """Runs one statement at a time with driver-side parameter binding.

    Values are never spliced into SQL text here: every caller-supplied value
    must travel as a positional ``?`` bind.
    """

    def __init__(self, driver: WarehouseDriver) -> None:
        self._driver = driver

    async def execute(
        self,
        connection: PooledConnection,
        sql: str,
        params: Sequence[Any] | None = None,
    ) -> QueryResult:
        statement = sql.strip()
        if not statement:
            raise ValueError("Provide SQL to execute.")
        if params is not None and not isinstance(params, (list, tuple)):
            raise TypeError(f"params must be a list or tuple, got {type(params).__name__}")
        binds = list(params or ())
        expected = count_placeholders(statement)
        if expected != len(binds):
            raise ValueError(f"Statement has {expected} placeholder(s) but {len(binds)} bind value(s) were given")

        started = time.perf_counter()
        try:
            columns, rows = await run_in_threadpool(
                self._driver.execute, connection.handle, statement, binds or None
            )
        except QueryError:
            raise
        except Exception as exc:
            error = QueryError.from_driver(exc)
            logger.error("Query failed on connection {} [{}]: {}", connection.id, error.code, error.message)
            raise error from exc
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        result = QueryResult(
            columns=tuple(columns),
            rows=tuple(tuple(row) for row in rows),
            row_count=len(rows),
            elapsed_ms=elapsed_ms,
        )
        logger.debug(
            "Query executed in {}ms, {} row(s): {}", elapsed_ms, result.row_count, " ".join(statement.split())[:200]
        )
        return result


__all__ = ["QueryExecutor", "QueryResult", "count_placeholders"]
