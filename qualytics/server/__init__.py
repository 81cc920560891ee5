"""Qualytics Server - data-quality dashboard API over a pooled warehouse connection.

Modules:
    server: Application factory and CLI entry point
    connection_api: Connect/disconnect/status and catalog browsing
    dq_api: Data-quality metrics endpoints
    middleware: HTTP middleware (error handling, request logging)
    queries: SQL text with positional binds
    shared: Shared services (config store, pool, executor, cache)
"""

from .connection_api import get_connection_api_routes
from .dq_api import get_dq_api_routes
from .middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from .server import app, create_app
from .shared import ServerError, Services, build_services

__all__ = [
    # Application
    "app",
    "create_app",
    # Routes
    "get_connection_api_routes",
    "get_dq_api_routes",
    # Middleware
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    # Shared state
    "ServerError",
    "Services",
    "build_services",
]
