"""Startup ordering, serving and graceful shutdown."""

from __future__ import annotations

import structlog
import uvicorn
from fastapi import FastAPI

from republisher.config import Settings
from republisher.core.cache import SnapshotCache
from republisher.core.fetcher import DiscoveryFetcher, UpstreamGetter
from republisher.core.refresh import RefreshLoop, failure_stage
from republisher.exceptions import FetchError
from republisher.main import create_app
from republisher.middleware.metrics import DEFAULT_METRICS_REGISTRY, MetricsRegistry

logger = structlog.get_logger(__name__)


class LifecycleManager:
    """Prime the cache, then serve until a termination signal arrives.

    uvicorn owns SIGINT/SIGTERM: on signal it stops accepting connections,
    gives in-flight requests ``shutdown_grace_seconds`` to finish, closes the
    rest, and then runs the app lifespan shutdown that joins the refresh task.
    """

    def __init__(
        self,
        settings: Settings,
        refresh_loop: RefreshLoop,
        app: FastAPI,
    ) -> None:
        self._settings = settings
        self._refresh_loop = refresh_loop
        self.app = app
        self._server: uvicorn.Server | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        upstream: UpstreamGetter,
        metrics: MetricsRegistry = DEFAULT_METRICS_REGISTRY,
    ) -> LifecycleManager:
        """Wire fetcher, cache, refresh loop and app for one upstream."""
        cache = SnapshotCache()
        refresh_loop = RefreshLoop(
            fetcher=DiscoveryFetcher(upstream, discovery_path=settings.upstream.discovery_path),
            cache=cache,
            jwks_path=settings.publish.jwks_path,
            interval_seconds=settings.refresh.interval_seconds,
            fetch_timeout_seconds=settings.upstream.fetch_timeout_seconds,
            metrics=metrics,
        )
        app = create_app(settings, cache, refresh_loop=refresh_loop, metrics=metrics)
        return cls(settings, refresh_loop, app)

    @property
    def started(self) -> bool:
        """True once the listener is bound and accepting connections."""
        return self._server is not None and self._server.started

    @property
    def bound_port(self) -> int | None:
        """Port the listener is bound to, resolving port 0 to the real port."""
        if not self.started:
            return None
        for server in getattr(self._server, "servers", []):
            for sock in server.sockets:
                return sock.getsockname()[1]
        return None

    def request_shutdown(self) -> None:
        """Start the same graceful shutdown a termination signal triggers."""
        if self._server is not None:
            self._server.should_exit = True

    def build_server_config(self) -> uvicorn.Config:
        """uvicorn configuration for the public listener."""
        return uvicorn.Config(
            self.app,
            host=self._settings.app.host,
            port=self._settings.app.port,
            lifespan="on",
            timeout_graceful_shutdown=self._settings.refresh.shutdown_grace_seconds,
            access_log=False,
            log_config=None,
        )

    async def run(self) -> int:
        """Prime, serve, and return the process exit code."""
        try:
            await self._refresh_loop.prime()
        except (FetchError, TimeoutError) as exc:
            logger.error(
                "priming_failed",
                stage=failure_stage(exc),
                path=getattr(exc, "path", None),
                error=str(exc) or type(exc).__name__,
            )
            return 1
        except Exception as exc:
            logger.exception(
                "priming_failed", stage=failure_stage(exc), error=str(exc) or type(exc).__name__
            )
            return 1

        self._server = uvicorn.Server(self.build_server_config())
        logger.info(
            "listening",
            host=self._settings.app.host,
            port=self._settings.app.port,
            shutdown_grace_seconds=self._settings.refresh.shutdown_grace_seconds,
        )
        await self._server.serve()

        if not self._server.started:
            logger.error(
                "server_start_failed", host=self._settings.app.host, port=self._settings.app.port
            )
            return 1
        logger.info("shutdown_complete")
        return 0
