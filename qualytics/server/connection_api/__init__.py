"""Connection management and catalog browsing API.

Endpoints:
    POST /api/snowflake/connect - Validate credentials and store them server-side
    POST /api/snowflake/disconnect - Drop pooled sessions and stored credentials
    GET  /api/snowflake/status - Report whether credentials are stored
    GET  /api/snowflake/databases, /schemas, /tables - Catalog listings
"""

from .routes import connection_api_routes, get_connection_api_routes

__all__ = ["connection_api_routes", "get_connection_api_routes"]
