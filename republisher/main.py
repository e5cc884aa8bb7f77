"""FastAPI application factory."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import FastAPI

from republisher.config import Settings
from republisher.core.cache import SnapshotCache
from republisher.core.refresh import RefreshLoop
from republisher.error_handlers import register_exception_handlers
from republisher.middleware.correlation_id import CorrelationIdMiddleware
from republisher.middleware.logging import LoggingMiddleware
from republisher.middleware.metrics import (
    DEFAULT_METRICS_REGISTRY,
    MetricsMiddleware,
    MetricsRegistry,
    build_metrics_endpoint,
)
from republisher.routers import discovery, health


def create_app(
    settings: Settings,
    cache: SnapshotCache,
    refresh_loop: RefreshLoop | None = None,
    metrics: MetricsRegistry = DEFAULT_METRICS_REGISTRY,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The app only reads from ``cache``. When ``refresh_loop`` is given, the
    app lifespan runs its periodic refresh for as long as the app is served.
    """
    app = FastAPI(
        title=settings.app.service,
        lifespan=build_lifespan(refresh_loop) if refresh_loop is not None else None,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.snapshot_cache = cache
    app.state.cache_max_age = int(settings.refresh.interval_seconds)

    register_exception_handlers(app)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware, registry=metrics)
    app.add_middleware(CorrelationIdMiddleware)

    if settings.app.metrics_enabled:
        app.add_api_route(
            "/metrics", build_metrics_endpoint(metrics), methods=["GET"], include_in_schema=False
        )
    app.include_router(discovery.router)
    discovery.add_jwks_route(app.router, settings.publish.jwks_path)
    app.include_router(health.router)
    return app


def build_lifespan(
    refresh_loop: RefreshLoop,
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    """Run the periodic refresh for exactly as long as the app is served."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        task = asyncio.create_task(refresh_loop.run(), name="refresh-loop")
        app.state.refresh_task = task
        try:
            yield
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    return lifespan
