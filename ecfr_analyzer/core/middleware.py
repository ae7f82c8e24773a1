"""
eCFR Analyzer - Middleware

Request logging with correlation IDs. The request ID is taken from the
X-Request-ID header when present, echoed back on the response, and bound
to a context variable so downstream log lines carry it.
"""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..utils.context import get_request_id, reset_request_id, set_request_id

logger = logging.getLogger(__name__)

__all__ = ["RequestLoggingMiddleware", "get_request_id"]


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request with method, path, status code and duration.

    Status polling from the dashboard is frequent, so successful
    GET /api/v1/status calls are logged at DEBUG.
    """

    quiet_paths = frozenset({"/api/v1/status", "/health"})

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        token = set_request_id(request_id)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"[{request_id}] Unhandled exception: {type(e).__name__}: {e}",
                extra={"path": request.url.path, "method": request.method},
            )
            reset_request_id(token)
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000

        if response.status_code >= 500:
            log_level = logging.ERROR
        elif response.status_code >= 400:
            log_level = logging.WARNING
        elif request.url.path in self.quiet_paths:
            log_level = logging.DEBUG
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({duration_ms:.1f}ms)",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )

        response.headers["X-Request-ID"] = request_id
        reset_request_id(token)
        return response
