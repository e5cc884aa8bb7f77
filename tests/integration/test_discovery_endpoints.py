"""Integration tests for the republished discovery and JWKS endpoints."""

from __future__ import annotations

import json

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from republisher.config import AppSettings, PublishSettings, Settings
from republisher.core.cache import Snapshot, SnapshotCache
from republisher.core.fetcher import DiscoveryFetcher
from republisher.core.refresh import RefreshLoop
from republisher.main import create_app
from republisher.middleware.metrics import MetricsRegistry
from republisher.schemas.discovery import ProviderMetadata


class _UpstreamSwitch:
    """Routes upstream calls to a healthy handler until switched off."""

    def __init__(self, healthy) -> None:
        self.healthy = healthy
        self.available = True

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if not self.available:
            raise httpx.ConnectError("api server unreachable", request=request)
        return self.healthy(request)


class _UnrenderableMetadata(ProviderMetadata):
    """Metadata whose JSON rendering fails, standing in for a corrupt cache entry."""

    def model_dump_json(self, **kwargs) -> str:
        raise ValueError("secret internal detail")


async def _build(make_upstream, handler, settings: Settings | None = None):
    settings = settings or Settings()
    cache = SnapshotCache()
    metrics = MetricsRegistry()
    loop = RefreshLoop(
        fetcher=DiscoveryFetcher(make_upstream(handler)),
        cache=cache,
        jwks_path=settings.publish.jwks_path,
        metrics=metrics,
    )
    app = create_app(settings, cache, metrics=metrics)
    return app, loop, cache


def _client(app: FastAPI, **kwargs) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app, **kwargs), base_url="http://testserver")


@pytest.mark.asyncio
async def test_discovery_document_points_jwks_uri_at_republisher(
    make_upstream, mock_api_server
) -> None:
    """The API server's jwks_uri is replaced by the issuer-relative /jwks URL."""
    app, loop, _ = await _build(make_upstream, mock_api_server)
    await loop.prime()

    async with _client(app) as client:
        response = await client.get("/.well-known/openid-configuration")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json"
    assert response.headers["cache-control"] == "public, max-age=300"
    payload = response.json()
    assert payload["issuer"] == "https://api.example:6443"
    assert payload["jwks_uri"] == "https://api.example:6443/jwks"
    assert payload["id_token_signing_alg_values_supported"] == ["RS256"]
    assert "openid/v1/jwks" not in response.text


@pytest.mark.asyncio
async def test_jwks_endpoints_return_upstream_body_verbatim(
    make_upstream, mock_api_server, jwks_body
) -> None:
    """Both JWKS paths return the exact upstream bytes with the JWK set media type."""
    app, loop, _ = await _build(make_upstream, mock_api_server)
    await loop.prime()

    async with _client(app) as client:
        primary = await client.get("/jwks")
        alias = await client.get("/.well-known/jwks.json")

    for response in (primary, alias):
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/jwk-set+json"
        assert response.content == jwks_body
    assert json.loads(primary.content)["keys"][0]["kid"] == "abc"


_SERVED_PATHS = ("/.well-known/openid-configuration", "/jwks")


@pytest.mark.asyncio
async def test_failed_refresh_serves_byte_identical_stale_documents(
    make_upstream, mock_api_server
) -> None:
    """An unreachable API server after priming changes nothing clients see."""
    upstream = _UpstreamSwitch(mock_api_server)
    app, loop, _ = await _build(make_upstream, upstream)
    await loop.prime()

    async with _client(app) as client:
        before = [await client.get(path) for path in _SERVED_PATHS]
        upstream.available = False
        assert await loop.refresh_once() is False
        after = [await client.get(path) for path in _SERVED_PATHS]

    for old, new in zip(before, after, strict=True):
        assert new.status_code == 200
        assert new.content == old.content


@pytest.mark.asyncio
async def test_endpoints_return_503_before_priming(make_upstream, mock_api_server) -> None:
    """Nothing is served from an empty cache."""
    app, _, _ = await _build(make_upstream, mock_api_server)

    async with _client(app) as client:
        discovery = await client.get("/.well-known/openid-configuration")
        jwks = await client.get("/jwks")
        ready = await client.get("/health/ready")

    for response in (discovery, jwks, ready):
        assert response.status_code == 503
        assert response.json()["code"] == "not_ready"


@pytest.mark.asyncio
async def test_custom_jwks_path_is_advertised_and_served(
    make_upstream, mock_api_server, jwks_body
) -> None:
    """A configured JWKS path is both advertised and routable."""
    settings = Settings(publish=PublishSettings(jwks_path="/openid/keys"))
    app, loop, _ = await _build(make_upstream, mock_api_server, settings)
    await loop.prime()

    async with _client(app) as client:
        discovery = await client.get("/.well-known/openid-configuration")
        jwks = await client.get("/openid/keys")

    assert discovery.json()["jwks_uri"] == "https://api.example:6443/openid/keys"
    assert jwks.content == jwks_body


@pytest.mark.asyncio
async def test_serialization_failure_returns_generic_500() -> None:
    """Rendering failures never leak internal detail to clients."""
    cache = SnapshotCache()
    cache.set(
        Snapshot(
            metadata=_UnrenderableMetadata(
                issuer="https://api.example:6443", jwks_uri="https://api.example:6443/jwks"
            ),
            jwks=b'{"keys":[]}',
            fetched_at=None,
            ok=True,
        )
    )
    app = create_app(Settings(), cache, metrics=MetricsRegistry())

    async with _client(app) as client:
        response = await client.get("/.well-known/openid-configuration")

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error.", "code": "internal_error"}
    assert "secret" not in response.text


@pytest.mark.asyncio
async def test_health_metrics_and_unknown_routes(make_upstream, mock_api_server) -> None:
    """Probes, metrics scrape and 404 shape on a primed app."""
    app, loop, _ = await _build(make_upstream, mock_api_server)
    await loop.prime()

    async with _client(app) as client:
        live = await client.get("/health/live")
        ready = await client.get("/health/ready")
        await client.get("/jwks")
        metrics = await client.get("/metrics")
        missing = await client.get("/openid/v1/jwks")

    assert live.json() == {"status": "live"}
    assert ready.status_code == 200
    assert ready.json()["status"] == "ready"
    assert 'republisher_refresh_total{outcome="success",stage=""} 1' in metrics.text
    assert (
        'republisher_http_requests_total{method="GET",path="/jwks",status="200"} 1' in metrics.text
    )
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Not Found", "code": "not_found"}


@pytest.mark.asyncio
async def test_unmatched_paths_share_one_metrics_label(make_upstream, mock_api_server) -> None:
    """Scanning arbitrary paths cannot grow the set of exported series."""
    app, loop, _ = await _build(make_upstream, mock_api_server)
    await loop.prime()

    async with _client(app) as client:
        for index in range(50):
            await client.get(f"/scan-{index}")
        metrics = await client.get("/metrics")

    assert "/scan-" not in metrics.text
    assert (
        'republisher_http_requests_total{method="GET",path="<unmatched>",status="404"} 50'
        in metrics.text
    )


@pytest.mark.asyncio
async def test_metrics_route_can_be_disabled(make_upstream, mock_api_server) -> None:
    """With metrics disabled the public listener serves no /metrics route."""
    settings = Settings(app=AppSettings(metrics_enabled=False))
    app, loop, _ = await _build(make_upstream, mock_api_server, settings)
    await loop.prime()

    async with _client(app) as client:
        metrics = await client.get("/metrics")
        discovery = await client.get("/.well-known/openid-configuration")

    assert metrics.status_code == 404
    assert discovery.status_code == 200
