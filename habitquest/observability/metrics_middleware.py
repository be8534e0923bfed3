"""
FastAPI middleware for automatic Prometheus metrics collection.

Tracks request counts, latency and requests in progress per endpoint.
"""

import logging
import time
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from habitquest.observability.metrics import (
    http_requests_total,
    http_request_duration_seconds,
    http_requests_in_progress,
)

logger = logging.getLogger(__name__)

# Collections whose next path segment is a document or user id
_ID_PARENTS = frozenset({"users", "habits", "challenges", "notifications"})
_NAMED_SEGMENTS = frozenset({"ai"})


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect Prometheus metrics for HTTP requests.

    Automatically tracks:
    - Total requests (counter) by method, endpoint, status
    - Request duration (histogram) by method, endpoint
    - Requests in progress (gauge) by method, endpoint
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        path = normalize_path(request.url.path)

        http_requests_in_progress.labels(method=method, endpoint=path).inc()
        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error(f"Request failed: {e}", exc_info=True)
            raise
        finally:
            http_requests_in_progress.labels(method=method, endpoint=path).dec()
            http_requests_total.labels(method=method, endpoint=path, status=str(status_code)).inc()
            http_request_duration_seconds.labels(method=method, endpoint=path).observe(
                time.perf_counter() - start_time
            )

        return response


def normalize_path(path: str) -> str:
    """
    Collapse ids in a request path to keep label cardinality bounded.

    /api/v1/habits/3f2a...e9/complete -> /api/v1/habits/{id}/complete
    """
    parts = path.strip("/").split("/")
    normalized = []
    for index, part in enumerate(parts):
        if index > 0 and parts[index - 1] in _ID_PARENTS and part not in _NAMED_SEGMENTS:
            normalized.append("{id}")
        else:
            normalized.append(part)
    return "/" + "/".join(normalized)


def setup_metrics_middleware(app):
    """Add Prometheus metrics middleware to the FastAPI application"""
    app.add_middleware(PrometheusMiddleware)
    logger.info("Prometheus metrics middleware added to FastAPI")
