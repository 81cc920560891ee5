"""DuckDB macros emulating Snowflake session-context functions."""

from duckdb import DuckDBPyConnection
from loguru import logger

from ..config import ConnectionConfig

LOCAL_VERSION = "qualytics-local"

# Temporary macros live in the connection's temp catalog, so each handle
# reports the account and warehouse it was opened for.
_MACRO_DEFINITIONS = [
    ("CURRENT_ACCOUNT", "CREATE OR REPLACE TEMP MACRO CURRENT_ACCOUNT() AS {account}"),
    ("CURRENT_WAREHOUSE", "CREATE OR REPLACE TEMP MACRO CURRENT_WAREHOUSE() AS {warehouse}"),
    ("CURRENT_VERSION", "CREATE OR REPLACE TEMP MACRO CURRENT_VERSION() AS {version}"),
]


def sql_literal(value: str | None) -> str:
    if not value:
        return "NULL"
    return "'" + value.replace("'", "''") + "'"


def register_session_macros(duck_conn: DuckDBPyConnection, config: ConnectionConfig) -> None:
    """Register the session-context macros for ``config`` on ``duck_conn``."""
    key = config.pool_key
    values = {
        "account": sql_literal(key.account.upper()),
        "warehouse": sql_literal(key.warehouse),
        "version": sql_literal(LOCAL_VERSION),
    }
    for name, template in _MACRO_DEFINITIONS:
        try:
            duck_conn.execute(template.format(**values))
        except Exception as exc:
            # Name may collide with a built-in on newer DuckDB releases
            logger.debug("Skipping macro {}: {}", name, exc)


__all__ = ["LOCAL_VERSION", "register_session_macros", "sql_literal"]
