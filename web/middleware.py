"""
Request middleware: correlation ids, access logging, metrics and timeouts.

Health probes are neither logged nor timed out so a polling load balancer
does not drown the access log.
"""
import asyncio
import logging
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from core.observability import (
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    metrics,
    set_correlation_id,
)

logger = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0
HISTORY_REQUEST_TIMEOUT = 90.0  # unbounded raw scans over the whole price log

QUIET_PATHS = frozenset({"/api/health", "/health"})
UNTIMED_PREFIXES = ("/docs", "/redoc", "/openapi")


def is_history_path(path: str) -> bool:
    return path.startswith("/api/stock/") and path.endswith("/historical")


def timeout_for(path: str) -> float:
    return HISTORY_REQUEST_TIMEOUT if is_history_path(path) else DEFAULT_REQUEST_TIMEOUT


def endpoint_name(request: Request) -> str:
    """``METHOD /route/{template}``; falls back to the raw path when no route matched."""
    route = request.scope.get("route")
    return f"{request.method} {getattr(route, 'path', None) or request.url.path}"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds a correlation id (incoming ``X-Request-ID`` or a fresh one),
    logs each request with its duration and feeds the metrics collector.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Request-ID") or generate_correlation_id()
        set_correlation_id(correlation_id)

        path = request.url.path
        verbose = path not in QUIET_PATHS
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.error(
                f"{request.method} {path} raised {type(e).__name__}",
                extra={"path": path, "duration_ms": elapsed_ms, "error": str(e)}
            )
            metrics.record_error(type(e).__name__)
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = correlation_id
        response.headers["X-Response-Time"] = f"{elapsed_ms:.2f}ms"

        status = response.status_code
        if verbose:
            logger.log(
                logging.INFO if status < 400 else logging.WARNING,
                f"{request.method} {path} -> {status}",
                extra={
                    "path": path,
                    "status_code": status,
                    "duration_ms": round(elapsed_ms, 2),
                    "client_ip": request.client.host if request.client else "unknown",
                }
            )

        endpoint = endpoint_name(request)
        metrics.record_request(endpoint)
        metrics.record_timing(endpoint, elapsed_ms)
        if status >= 400:
            metrics.record_error(f"HTTP_{status}")
        return response


class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """Answers 504 when a request outlives its budget (longer for history scans)."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in QUIET_PATHS or path.startswith(UNTIMED_PREFIXES):
            return await call_next(request)

        timeout = timeout_for(path)
        try:
            return await asyncio.wait_for(call_next(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"{request.method} {path} timed out after {timeout}s",
                extra={"path": path, "timeout": timeout}
            )
            metrics.record_error("REQUEST_TIMEOUT")
            return JSONResponse(
                status_code=504,
                content={
                    "error": "Request Timeout",
                    "detail": f"Request exceeded {timeout}s timeout",
                    "path": path,
                    "correlation_id": get_correlation_id(),
                }
            )
