"""Async HTTP client for the Kubernetes API server."""

from __future__ import annotations

from typing import Any

import httpx

from republisher.exceptions import ConfigError, UpstreamResponseError, UpstreamUnavailableError


class UpstreamClient:
    """Authenticated GET access to API server paths.

    Timeouts are left to the caller: every request inherits the deadline of
    the surrounding task, so a hung API server cannot outlive a shutdown.
    """

    def __init__(
        self,
        base_url: str,
        verify: Any = True,
        auth: httpx.Auth | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Create client with cluster credentials or an injected transport."""
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            verify=verify,
            auth=auth,
            timeout=None,
        )

    async def get(self, path: str) -> bytes:
        """GET a path on the API server and return the raw response body."""
        try:
            response = await self._client.get(path, headers={"Accept": "application/json"})
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            raise UpstreamUnavailableError(f"API server unavailable: {exc!s}") from exc
        except ConfigError as exc:
            raise UpstreamUnavailableError(f"API server credentials unavailable: {exc!s}") from exc

        if response.status_code >= 500:
            raise UpstreamUnavailableError(
                f"API server returned status {response.status_code}.", response.status_code
            )
        if response.status_code >= 400:
            raise UpstreamResponseError(
                f"API server request failed with status {response.status_code}.",
                response.status_code,
            )
        return response.content

    async def aclose(self) -> None:
        """Close underlying HTTP client if owned by this instance."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> UpstreamClient:
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        """Exit async context manager and close managed resources."""
        del exc_type, exc, tb
        await self.aclose()
