import argparse
from contextlib import asynccontextmanager
from typing import AsyncIterator

from loguru import logger
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from uvicorn import run

from ..config import ConnectionConfig, Settings
from ..connector import WarehouseDriver
from ..log import configure_logging
from .connection_api import get_connection_api_routes
from .dq_api import get_dq_api_routes
from .middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from .shared import Services, build_services


async def fallback_route(request: Request) -> JSONResponse:
    """Fallback route to log unmatched requests."""
    logger.warning("Received unmatched request: {} {}", request.method, request.url.path)
    return JSONResponse(
        {"success": False, "error": {"code": "NOT_FOUND", "message": "Route not found."}},
        status_code=404,
    )


def _lifespan(services: Services):
    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        env_config = ConnectionConfig.from_env()
        if env_config is not None and not services.server_config.has():
            services.server_config.set(env_config)
            logger.info("Seeded server config from SNOWFLAKE_* environment variables")
        services.pool.start()
        try:
            yield
        finally:
            await services.pool.stop()

    return lifespan


def create_app(
    settings: Settings | None = None,
    *,
    driver: WarehouseDriver | None = None,
    debug: bool = False,
) -> Starlette:
    """Build the Starlette application with its own pool, config store and cache."""
    settings = settings or Settings.from_env()
    services = build_services(settings, driver)

    routes = [
        *get_connection_api_routes(),
        *get_dq_api_routes(),
        Route("/{path:path}", fallback_route),  # Fallback route
    ]

    application = Starlette(debug=debug, routes=routes, lifespan=_lifespan(services))
    application.state.services = services
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    return application


app = create_app()


# CLI Entry Point
def main() -> None:
    parser = argparse.ArgumentParser(description="Run the Qualytics data-quality dashboard API.")

    parser.add_argument(
        "--host", type=str, default="127.0.0.1", help="Host to run the server on (default: 127.0.0.1)"
    )

    parser.add_argument(
        "--port", type=int, default=8000, help="Port to run the server on (default: 8000)"
    )

    parser.add_argument(
        "--debug", action="store_true", help="Enable debug mode (default: False)"
    )

    parser.add_argument(
        "--log-level", type=str, default=None, help="Log level (default: QUALYTICS_LOG_LEVEL or INFO)"
    )

    args = parser.parse_args()

    settings = Settings.from_env()
    configure_logging(args.log_level or settings.log_level)

    application = create_app(settings, debug=args.debug)

    # Run the server with the provided arguments
    run(application, host=args.host, port=args.port, log_level="warning")


if __name__ == "__main__":
    main()
