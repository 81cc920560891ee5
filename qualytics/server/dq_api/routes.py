"""Route definitions for the data-quality metrics API."""

from starlette.routing import Route

from . import handlers


def get_dq_api_routes() -> list[Route]:
    """Get all data-quality API routes.

    Returns:
        List of Starlette Route objects for the DQ metrics API
    """
    return [
        Route("/api/dq/overall-score", handlers.overall_score, methods=["GET"]),
        Route("/api/dq/daily-summary", handlers.daily_summary, methods=["GET"]),
        Route("/api/dq/datasets", handlers.datasets, methods=["GET"]),
        Route("/api/dq/check-results", handlers.check_results, methods=["GET"]),
    ]


# Convenience export
dq_api_routes = get_dq_api_routes()
