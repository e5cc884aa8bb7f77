"""Structured request logging middleware."""

from __future__ import annotations

from time import perf_counter

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

PROBE_PATH_PREFIXES = ("/health/", "/metrics")

logger = structlog.get_logger(__name__)


def _extract_client_ip(request: Request) -> str:
    """Extract client address using X-Forwarded-For when present."""
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    client = request.client
    return client.host if client else "unknown"


def _is_probe(path: str) -> bool:
    return path.startswith(PROBE_PATH_PREFIXES)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Emit one structured log per request.

    Probe and scrape traffic is logged at debug level so it does not drown
    out discovery and JWKS requests.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        """Log completion metadata for each request."""
        start = perf_counter()
        path = request.url.path
        fields = {
            "method": request.method,
            "path": path,
            "client_ip": _extract_client_ip(request),
            "user_agent": request.headers.get("user-agent", ""),
        }

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_completed",
                status_code=500,
                duration_ms=round((perf_counter() - start) * 1000, 2),
                **fields,
            )
            raise

        if response.status_code >= 500:
            event_logger = logger.error
        elif response.status_code >= 400:
            event_logger = logger.warning
        elif _is_probe(path):
            event_logger = logger.debug
        else:
            event_logger = logger.info
        event_logger(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((perf_counter() - start) * 1000, 2),
            **fields,
        )
        return response
