"""Priming and periodic refresh of the snapshot cache."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from republisher.core.cache import Snapshot, SnapshotCache
from republisher.core.fetcher import DiscoveryFetcher, FetchResult
from republisher.exceptions import FetchError
from republisher.middleware.metrics import DEFAULT_METRICS_REGISTRY, MetricsRegistry

logger = structlog.get_logger(__name__)

UNEXPECTED_STAGE = "unexpected"


class RefreshLoop:
    """Sole writer of the snapshot cache.

    ``prime`` must succeed once before serving starts; ``run`` then refreshes
    on a fixed interval until the task is cancelled. A failed periodic fetch
    keeps the previous snapshot in place.
    """

    def __init__(
        self,
        fetcher: DiscoveryFetcher,
        cache: SnapshotCache,
        jwks_path: str,
        interval_seconds: float = 300.0,
        fetch_timeout_seconds: float = 30.0,
        metrics: MetricsRegistry = DEFAULT_METRICS_REGISTRY,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._jwks_path = jwks_path
        self._interval_seconds = interval_seconds
        self._fetch_timeout_seconds = fetch_timeout_seconds
        self._metrics = metrics
        self._now = now or (lambda: datetime.now(UTC))

    @property
    def interval_seconds(self) -> float:
        """Fixed delay between periodic refreshes."""
        return self._interval_seconds

    async def prime(self) -> Snapshot:
        """Fetch and commit the first snapshot; any failure propagates."""
        try:
            snapshot = self._commit(await self._fetch())
        except Exception as exc:
            self._record_failure(exc)
            raise
        logger.info(
            "priming_completed",
            issuer=snapshot.metadata.issuer if snapshot.metadata else None,
            jwks_uri=snapshot.metadata.jwks_uri if snapshot.metadata else None,
        )
        return snapshot

    async def refresh_once(self) -> bool:
        """Run one periodic cycle; returns False when the previous snapshot was kept."""
        try:
            snapshot = self._commit(await self._fetch())
        except (FetchError, TimeoutError) as exc:
            self._record_failure(exc)
            logger.warning(
                "refresh_failed",
                stage=failure_stage(exc),
                path=getattr(exc, "path", None),
                error=str(exc) or type(exc).__name__,
                serving_fetched_at=_isoformat(self._cache.get().fetched_at),
            )
            return False
        except Exception as exc:
            self._record_failure(exc)
            logger.exception(
                "refresh_failed",
                stage=UNEXPECTED_STAGE,
                error=str(exc) or type(exc).__name__,
                serving_fetched_at=_isoformat(self._cache.get().fetched_at),
            )
            return False
        logger.info("refresh_completed", fetched_at=_isoformat(snapshot.fetched_at))
        return True

    async def run(self) -> None:
        """Refresh forever on a fixed interval; stops when the task is cancelled."""
        logger.info("refresh_loop_started", interval_seconds=self._interval_seconds)
        try:
            while True:
                await asyncio.sleep(self._interval_seconds)
                await self.refresh_once()
        finally:
            logger.info("refresh_loop_stopped")

    async def _fetch(self) -> FetchResult:
        async with asyncio.timeout(self._fetch_timeout_seconds):
            return await self._fetcher.fetch()

    def _commit(self, result: FetchResult) -> Snapshot:
        snapshot = Snapshot(
            metadata=result.metadata.republished(self._jwks_path),
            jwks=result.jwks,
            fetched_at=self._now(),
            ok=True,
        )
        self._cache.set(snapshot)
        self._metrics.record_refresh("success", timestamp=time.time())
        return snapshot

    def _record_failure(self, exc: Exception) -> None:
        self._metrics.record_refresh("failure", stage=failure_stage(exc))


def failure_stage(exc: BaseException) -> str:
    """Stage label for a failed fetch cycle."""
    if isinstance(exc, FetchError):
        return exc.stage
    if isinstance(exc, TimeoutError):
        return "timeout"
    return UNEXPECTED_STAGE


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
