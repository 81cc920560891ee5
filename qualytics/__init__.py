from .cache import CacheTTL, ResponseCache, cache_key
from .config import ConnectionConfig, PoolKey, Settings
from .connector import ConnectionPool, PooledConnection, QueryExecutor, QueryResult
from .errors import (
    ConfigurationError,
    ConnectionFailedError,
    NotConnectedError,
    PoolExhaustedError,
    QualyticsError,
    QueryError,
)
from .server_config import ServerConfigStore

__all__ = [
    "CacheTTL",
    "ConfigurationError",
    "ConnectionConfig",
    "ConnectionFailedError",
    "ConnectionPool",
    "NotConnectedError",
    "PoolExhaustedError",
    "PoolKey",
    "PooledConnection",
    "QualyticsError",
    "QueryError",
    "QueryExecutor",
    "QueryResult",
    "ResponseCache",
    "ServerConfigStore",
    "Settings",
    "cache_key",
]
