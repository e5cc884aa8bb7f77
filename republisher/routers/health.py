"""Health check router endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from republisher.core.cache import Snapshot
from republisher.dependencies import get_snapshot

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def live() -> dict[str, str]:
    """Liveness probe endpoint."""
    return {"status": "live"}


@router.get("/ready")
async def ready(snapshot: Annotated[Snapshot, Depends(get_snapshot)]) -> dict[str, str]:
    """Readiness probe requiring a committed snapshot."""
    if not snapshot.ok or snapshot.fetched_at is None:
        raise HTTPException(
            status_code=503,
            detail={"detail": "Service not ready.", "code": "not_ready"},
        )
    return {"status": "ready", "fetched_at": snapshot.fetched_at.isoformat()}
