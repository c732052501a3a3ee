"""HTTP middleware: Prometheus metrics, correlation IDs and access logs."""

import logging
import re
import time
import uuid
from typing import Callable, Optional
from urllib.parse import urlsplit

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from vodstream.core.logging import bind_context
from vodstream.core.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
    HTTP_REQUESTS_TOTAL,
)

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Ordered (pattern, label) pairs collapsing per-asset paths into one series.
_ENDPOINT_PATTERNS = (
    (re.compile(r"^/streams/.*"), "/streams/{key}"),
    (re.compile(r"^(/\w+)?/video/[^/]+/status$"), r"\1/video/{video_id}/status"),
)

access_logger = logging.getLogger("vodstream.access")


def endpoint_label(path: str) -> str:
    """Map a request path to a low-cardinality metrics label."""
    for pattern, label in _ENDPOINT_PATTERNS:
        if pattern.match(path):
            return pattern.sub(label, path)
    return path


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request counts, latency and in-flight requests."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        labels = {"method": request.method, "endpoint": endpoint_label(request.url.path)}
        in_progress = HTTP_REQUESTS_IN_PROGRESS.labels(**labels)
        in_progress.inc()
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            HTTP_REQUEST_DURATION_SECONDS.labels(**labels).observe(time.perf_counter() - started)
            HTTP_REQUESTS_TOTAL.labels(status_code=str(status_code), **labels).inc()
            in_progress.dec()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds the caller's correlation ID (or a new one) for the request and echoes it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_ID_HEADER) or str(uuid.uuid4())
        with bind_context(correlation_id=correlation_id):
            response = await call_next(request)
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Writes one access log entry per request.

    Relay targets often carry signed query strings, so only the host of a
    ``url`` parameter is logged.
    """

    def __init__(self, app: ASGIApp, log_query: bool = True):
        super().__init__(app)
        self.log_query = log_query

    def _target_host(self, request: Request) -> Optional[str]:
        target = request.query_params.get("url")
        return urlsplit(target).hostname if target else None

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        fields = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None,
        }
        if self.log_query:
            fields["upstream_host"] = self._target_host(request)
            fields["content_length"] = request.headers.get("content-length")

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
            access_logger.exception("Request failed", extra=fields)
            raise

        fields["status_code"] = response.status_code
        fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        access_logger.log(level, "%s %s %s", request.method, request.url.path, response.status_code, extra=fields)
        return response
