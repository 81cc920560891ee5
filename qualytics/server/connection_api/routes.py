"""Route definitions for the connection API."""

from starlette.routing import Route

from . import handlers


def get_connection_api_routes() -> list[Route]:
    """Get all connection API routes.

    Returns:
        List of Starlette Route objects for the connection API
    """
    return [
        Route("/api/snowflake/connect", handlers.connect, methods=["POST"]),
        Route("/api/snowflake/disconnect", handlers.disconnect, methods=["POST"]),
        Route("/api/snowflake/status", handlers.status, methods=["GET"]),
        Route("/api/snowflake/databases", handlers.list_databases, methods=["GET"]),
        Route("/api/snowflake/schemas", handlers.list_schemas, methods=["GET"]),
        Route("/api/snowflake/tables", handlers.list_tables, methods=["GET"]),
    ]


# Convenience export
connection_api_routes = get_connection_api_routes()
