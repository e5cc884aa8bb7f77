"""Shared FastAPI dependency helpers."""

from typing import Annotated

from fastapi import Depends, Request

from republisher.core.cache import Snapshot, SnapshotCache


def get_snapshot_cache(request: Request) -> SnapshotCache:
    """Expose the application's snapshot cache."""
    return request.app.state.snapshot_cache


def get_snapshot(cache: Annotated[SnapshotCache, Depends(get_snapshot_cache)]) -> Snapshot:
    """Read the current snapshot once per request."""
    return cache.get()


def get_cache_max_age(request: Request) -> int:
    """Seconds clients may cache republished documents."""
    return int(request.app.state.cache_max_age)
