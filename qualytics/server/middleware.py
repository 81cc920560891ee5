"""Middleware classes for the Qualytics server.

This module contains HTTP middleware for:
- Error handling: converts ServerError and QualyticsError exceptions to JSON responses
- Request logging: logs every API request with its status and duration
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Awaitable, Callable

from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from ..errors import QualyticsError, error_payload, status_code_for
from .shared import ServerError

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware to handle errors raised by route handlers.

    ServerError covers request validation; QualyticsError subclasses carry
    their own status code, error code and retry hint. Anything else becomes
    a 500 INTERNAL_ERROR and is logged with its traceback.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        try:
            return await call_next(request)
        except ServerError as e:
            return JSONResponse(
                {
                    "success": False,
                    "error": {"code": e.code, "message": e.message, "userMessage": e.message},
                    "metadata": {
                        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
                        "retryable": False,
                    },
                },
                status_code=e.status_code,
            )
        except QualyticsError as e:
            logger.warning("{} {} failed [{}]: {}", request.method, request.url.path, e.code, e.message)
            return JSONResponse(error_payload(e), status_code=status_code_for(e))
        except Exception as e:
            logger.exception("Unhandled error on {} {}", request.method, request.url.path)
            return JSONResponse(error_payload(e), status_code=500)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log API requests and response timings."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        started = time.perf_counter()
        logger.info("API Request: {} {}", request.method, request.url.path)
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "API Response: {} {} -> {} in {}ms",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response
