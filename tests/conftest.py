"""Shared fixtures: upstream API server documents and mock transports."""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from republisher.core.upstream import UpstreamClient

API_SERVER = "https://api.example:6443"
UPSTREAM_JWKS_PATH = "/openid/v1/jwks"


@pytest.fixture
def discovery_document() -> dict[str, object]:
    """Discovery document shaped like the one kube-apiserver serves."""
    return {
        "issuer": API_SERVER,
        "jwks_uri": f"{API_SERVER}{UPSTREAM_JWKS_PATH}",
        "response_types_supported": ["id_token"],
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": ["RS256"],
    }


@pytest.fixture
def jwks_body() -> bytes:
    """Upstream JWKS bytes with a deliberately unusual member order and spacing."""
    return (
        b'{"keys":[{"use":"sig","kty":"RSA","kid":"abc","alg":"RS256",'
        b'"n":"0vx7agoebGcQSuuPiLJXZptN9nndrQmbXEps2aiAFbWhM78LhWx4cbbfAAtVT86zwu1RK7aPFFxuhDR1L6tSoc_BJECPebWKRXjBZCiFV4n3oknjhMstn64tZ_2W-5JsGY4Hc5n9yBXArwl93lqt7_RN5w6Cf0h4QyQ5v-65YGjQR0_FDW2QvzqY368QQMicAtaSqzs8KJZgnYb9c7d0zgdAZHzu6qMQvRL5hajrn1n91CbOpbISD08qNLyrdkt-bFTWhAI4vMQFh6WeZu0fM4lFd2NcRwr3XPksINHaQ-G_xBniIqbw0Ls1jF44-csFCur-kEgU8awapJzKnqDKgw",'
        b'"e":"AQAB"}]}'
    )


@pytest.fixture
def mock_api_server(
    discovery_document: dict[str, object], jwks_body: bytes
) -> Callable[[httpx.Request], httpx.Response]:
    """Handler answering the two upstream paths like a healthy API server."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/.well-known/openid-configuration":
            return httpx.Response(200, content=json.dumps(discovery_document).encode("utf-8"))
        if request.url.path == UPSTREAM_JWKS_PATH:
            return httpx.Response(200, content=jwks_body)
        return httpx.Response(404, json={"kind": "Status", "code": 404})

    return handler


def build_upstream(handler: Callable[[httpx.Request], httpx.Response]) -> UpstreamClient:
    """Upstream client routed through an in-memory transport."""
    http_client = httpx.AsyncClient(base_url=API_SERVER, transport=httpx.MockTransport(handler))
    return UpstreamClient(base_url=API_SERVER, http_client=http_client)


@pytest.fixture
def make_upstream() -> Callable[[Callable[[httpx.Request], httpx.Response]], UpstreamClient]:
    """Factory building upstream clients around request handlers."""
    return build_upstream
