"""Middleware package exports."""

from republisher.middleware.correlation_id import CorrelationIdMiddleware
from republisher.middleware.logging import LoggingMiddleware
from republisher.middleware.metrics import (
    MetricsMiddleware,
    MetricsRegistry,
    build_metrics_endpoint,
)

__all__ = [
    "CorrelationIdMiddleware",
    "LoggingMiddleware",
    "MetricsMiddleware",
    "MetricsRegistry",
    "build_metrics_endpoint",
]
