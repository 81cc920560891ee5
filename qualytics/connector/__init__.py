from .drivers import DuckDBDriver, SnowflakeDriver, WarehouseDriver, build_driver
from .executor import QueryExecutor, QueryResult, count_placeholders
from .pool import ConnectionPool, ConnectionState, PooledConnection

__all__ = [
    "ConnectionPool",
    "ConnectionState",
    "DuckDBDriver",
    "PooledConnection",
    "QueryExecutor",
    "QueryResult",
    "SnowflakeDriver",
    "WarehouseDriver",
    "build_driver",
    "count_placeholders",
]
