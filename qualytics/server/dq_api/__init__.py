"""Data-quality metrics API.

Endpoints:
    GET /api/dq/overall-score - Latest overall DQ score and day-over-day change
    GET /api/dq/daily-summary - Per-day score and check totals
    GET /api/dq/datasets - Registered source datasets
    GET /api/dq/check-results - Individual check results with optional filters
"""

from .routes import dq_api_routes, get_dq_api_routes

__all__ = ["dq_api_routes", "get_dq_api_routes"]
