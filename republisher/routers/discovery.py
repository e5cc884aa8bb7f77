"""Republished OIDC discovery and JWKS endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from republisher.core.cache import Snapshot
from republisher.dependencies import get_cache_max_age, get_snapshot
from republisher.exceptions import SerializationError

DISCOVERY_PATH = "/.well-known/openid-configuration"
JWKS_PATHS = ("/jwks", "/.well-known/jwks.json")
JWK_SET_MEDIA_TYPE = "application/jwk-set+json"

router = APIRouter(tags=["discovery"])


def _require_ready(snapshot: Snapshot) -> Snapshot:
    """Reject requests arriving before any snapshot was committed."""
    if not snapshot.ok or snapshot.metadata is None:
        raise HTTPException(
            status_code=503,
            detail={"detail": "Discovery data not available.", "code": "not_ready"},
        )
    return snapshot


def _cache_headers(max_age: int) -> dict[str, str]:
    return {"Cache-Control": f"public, max-age={max_age}"}


@router.get(DISCOVERY_PATH)
async def openid_configuration(
    snapshot: Annotated[Snapshot, Depends(get_snapshot)],
    max_age: Annotated[int, Depends(get_cache_max_age)],
) -> Response:
    """Return provider metadata with jwks_uri pointing at this service."""
    metadata = _require_ready(snapshot).metadata
    try:
        body = metadata.model_dump_json(exclude_none=True)
    except (TypeError, ValueError) as exc:
        raise SerializationError("Unable to render discovery document.") from exc
    return Response(content=body, media_type="application/json", headers=_cache_headers(max_age))


async def jwks(
    snapshot: Annotated[Snapshot, Depends(get_snapshot)],
    max_age: Annotated[int, Depends(get_cache_max_age)],
) -> Response:
    """Return the upstream JWKS exactly as fetched."""
    body = _require_ready(snapshot).jwks
    return Response(content=body, media_type=JWK_SET_MEDIA_TYPE, headers=_cache_headers(max_age))


for _path in JWKS_PATHS:
    router.add_api_route(_path, jwks, methods=["GET"])


def add_jwks_route(app_router: APIRouter, path: str) -> None:
    """Serve the JWKS on an extra path when the advertised one is not built in."""
    if path not in JWKS_PATHS:
        app_router.add_api_route(path, jwks, methods=["GET"])
