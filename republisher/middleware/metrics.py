"""Prometheus-style metrics middleware and endpoint."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from time import perf_counter

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import PlainTextResponse, Response

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


@dataclass
class _DurationStat:
    """Aggregate duration stats per label tuple."""

    count: int = 0
    total_seconds: float = 0.0


class MetricsRegistry:
    """In-process metrics registry that exposes Prometheus text format."""

    def __init__(self) -> None:
        """Initialize counters and locks."""
        self._request_counts: dict[tuple[str, str, str], int] = {}
        self._duration_stats: dict[tuple[str, str, str], _DurationStat] = {}
        self._refresh_counts: dict[tuple[str, str], int] = {}
        self._last_refresh_success: float | None = None
        self._lock = Lock()

    def record(self, method: str, path: str, status: str, duration_seconds: float) -> None:
        """Record one request measurement for the label set."""
        key = (method, path, status)
        with self._lock:
            self._request_counts[key] = self._request_counts.get(key, 0) + 1
            stat = self._duration_stats.setdefault(key, _DurationStat())
            stat.count += 1
            stat.total_seconds += duration_seconds

    def record_refresh(self, outcome: str, stage: str = "", timestamp: float | None = None) -> None:
        """Record one refresh cycle; successful cycles also update the last-success gauge."""
        key = (outcome, stage)
        with self._lock:
            self._refresh_counts[key] = self._refresh_counts.get(key, 0) + 1
            if outcome == "success" and timestamp is not None:
                self._last_refresh_success = timestamp

    def refresh_count(self, outcome: str, stage: str = "") -> int:
        """Return the number of refresh cycles recorded for a label set."""
        with self._lock:
            return self._refresh_counts.get((outcome, stage), 0)

    def render_prometheus_text(self) -> str:
        """Render metrics in Prometheus exposition format."""
        lines = [
            "# HELP republisher_http_requests_total Total HTTP requests seen by the service.",
            "# TYPE republisher_http_requests_total counter",
        ]

        with self._lock:
            for method, path, status in sorted(self._request_counts.keys()):
                count = self._request_counts[(method, path, status)]
                labels = _format_labels(method=method, path=path, status=status)
                lines.append(f"republisher_http_requests_total{{{labels}}} {count}")

            lines.append(
                "# HELP republisher_http_request_duration_seconds End-to-end HTTP request duration in seconds."
            )
            lines.append("# TYPE republisher_http_request_duration_seconds summary")
            for method, path, status in sorted(self._duration_stats.keys()):
                stat = self._duration_stats[(method, path, status)]
                labels = _format_labels(method=method, path=path, status=status)
                lines.append(
                    f"republisher_http_request_duration_seconds_count{{{labels}}} {stat.count}"
                )
                lines.append(
                    "republisher_http_request_duration_seconds_sum"
                    f"{{{labels}}} {stat.total_seconds}"
                )

            lines.append("# HELP republisher_refresh_total Upstream refresh cycles by outcome.")
            lines.append("# TYPE republisher_refresh_total counter")
            for outcome, stage in sorted(self._refresh_counts.keys()):
                count = self._refresh_counts[(outcome, stage)]
                labels = _format_labels(outcome=outcome, stage=stage)
                lines.append(f"republisher_refresh_total{{{labels}}} {count}")

            if self._last_refresh_success is not None:
                lines.append(
                    "# HELP republisher_last_refresh_success_timestamp_seconds "
                    "Unix time of the last successful refresh."
                )
                lines.append("# TYPE republisher_last_refresh_success_timestamp_seconds gauge")
                lines.append(
                    f"republisher_last_refresh_success_timestamp_seconds {self._last_refresh_success}"
                )

        return "\n".join(lines) + "\n"


def _escape_label(value: str) -> str:
    """Escape string values for Prometheus label rendering."""
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _format_labels(**labels: str) -> str:
    """Build deterministic label set string."""
    return ",".join(f'{name}="{_escape_label(value)}"' for name, value in labels.items())


UNMATCHED_PATH = "<unmatched>"
DEFAULT_METRICS_REGISTRY = MetricsRegistry()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record metrics for all responses, including failed requests."""

    def __init__(self, app, registry: MetricsRegistry = DEFAULT_METRICS_REGISTRY) -> None:
        """Initialize middleware with optional custom metrics registry."""
        super().__init__(app)
        self._registry = registry

    async def dispatch(self, request: Request, call_next) -> Response:
        """Capture request counts and durations."""
        start = perf_counter()
        path = UNMATCHED_PATH
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            if route is not None:
                path = getattr(route, "path", path)
            self._registry.record(
                method=request.method,
                path=path,
                status=str(status_code),
                duration_seconds=perf_counter() - start,
            )


def build_metrics_endpoint(registry: MetricsRegistry = DEFAULT_METRICS_REGISTRY):
    """Build FastAPI-compatible endpoint that serves metrics text."""

    async def metrics_endpoint() -> PlainTextResponse:
        """Return current metrics in Prometheus exposition format."""
        return PlainTextResponse(
            registry.render_prometheus_text(),
            media_type=PROMETHEUS_CONTENT_TYPE,
        )

    return metrics_endpoint
