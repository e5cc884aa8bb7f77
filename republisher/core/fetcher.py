"""One discovery fetch cycle against the upstream API server."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlsplit

from pydantic import ValidationError

from republisher.exceptions import ParseError, TransportError, UpstreamError
from republisher.schemas.discovery import ProviderMetadata

DISCOVERY_PATH = "/.well-known/openid-configuration"


class UpstreamGetter(Protocol):
    """Anything able to GET a path from the API server."""

    async def get(self, path: str) -> bytes: ...


@dataclass(frozen=True)
class FetchResult:
    """Metadata and raw JWKS bytes retrieved in one cycle."""

    metadata: ProviderMetadata
    jwks: bytes


class DiscoveryFetcher:
    """Retrieve the discovery document and the key set it references."""

    def __init__(self, upstream: UpstreamGetter, discovery_path: str = DISCOVERY_PATH) -> None:
        self._upstream = upstream
        self._discovery_path = discovery_path

    async def fetch(self) -> FetchResult:
        """Run one fetch cycle; raises FetchError subclasses tagged with the failing stage."""
        raw_metadata = await self._get("metadata", self._discovery_path)
        metadata = self._parse_metadata(raw_metadata)
        jwks_path = self.jwks_request_path(metadata.jwks_uri)
        raw_jwks = await self._get("jwks", jwks_path)
        self._validate_jwks(raw_jwks, jwks_path)
        return FetchResult(metadata=metadata, jwks=raw_jwks)

    async def _get(self, stage: str, path: str) -> bytes:
        try:
            return await self._upstream.get(path)
        except UpstreamError as exc:
            raise TransportError(exc.detail, stage=stage, path=path) from exc

    def _parse_metadata(self, raw: bytes) -> ProviderMetadata:
        payload = _json_object(raw, stage="metadata", path=self._discovery_path)
        try:
            return ProviderMetadata.model_validate(payload)
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "document"
            raise ParseError(
                f"Invalid discovery document field {field}: {first.get('msg', 'invalid')}.",
                stage="metadata",
                path=self._discovery_path,
            ) from exc

    @staticmethod
    def jwks_request_path(jwks_uri: str) -> str:
        """Return the path-relative request target for a jwks_uri."""
        if any(char.isspace() or not char.isprintable() for char in jwks_uri):
            raise ParseError(f"Malformed jwks_uri {jwks_uri!r}.", stage="urlparse")
        try:
            parts = urlsplit(jwks_uri)
        except ValueError as exc:
            raise ParseError(f"Malformed jwks_uri {jwks_uri!r}.", stage="urlparse") from exc
        if parts.scheme not in {"http", "https"} or not parts.netloc or not parts.path:
            raise ParseError(f"Malformed jwks_uri {jwks_uri!r}.", stage="urlparse")
        if parts.query:
            return f"{parts.path}?{parts.query}"
        return parts.path

    @staticmethod
    def _validate_jwks(raw: bytes, path: str) -> None:
        payload = _json_object(raw, stage="jwks", path=path)
        keys = payload.get("keys")
        if not isinstance(keys, list):
            raise ParseError("Invalid JWKS payload: keys must be a list.", stage="jwks", path=path)
        if not all(isinstance(item, dict) for item in keys):
            raise ParseError("Invalid JWKS key entry.", stage="jwks", path=path)


def _json_object(raw: bytes, stage: str, path: str) -> dict[str, Any]:
    """Decode a response body that must be a JSON object."""
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise ParseError("Upstream returned invalid JSON.", stage=stage, path=path) from exc
    if not isinstance(payload, dict):
        raise ParseError("Upstream returned invalid JSON object.", stage=stage, path=path)
    return payload
