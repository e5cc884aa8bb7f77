"""Unit tests for request logging and correlation ID middleware."""

from __future__ import annotations

from typing import Any

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from republisher.middleware import logging as logging_module
from republisher.middleware.correlation_id import (
    CORRELATION_ID_HEADER,
    CorrelationIdMiddleware,
    resolve_correlation_id,
)
from republisher.middleware.logging import LoggingMiddleware


class _CaptureLogger:
    """Capture structlog-like logger calls for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def _capture(self, level: str):
        def log(event: str, **kwargs: Any) -> None:
            self.calls.append((level, event, kwargs))

        return log

    def __getattr__(self, level: str):
        return self._capture(level)


def _build_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    @app.get("/jwks")
    async def jwks() -> dict[str, list]:
        return {"keys": []}

    @app.get("/health/live")
    async def live() -> dict[str, str]:
        return {"status": "live"}

    return app


@pytest.mark.asyncio
async def test_request_is_logged_with_forwarded_client_ip(monkeypatch) -> None:
    """One request_completed event per request, using X-Forwarded-For."""
    capture = _CaptureLogger()
    monkeypatch.setattr(logging_module, "logger", capture)

    async with AsyncClient(
        transport=ASGITransport(app=_build_app()), base_url="http://testserver"
    ) as client:
        response = await client.get("/jwks", headers={"x-forwarded-for": "203.0.113.7, 10.0.0.1"})

    assert response.status_code == 200
    assert len(capture.calls) == 1
    level, event, payload = capture.calls[0]
    assert (level, event) == ("info", "request_completed")
    assert payload["client_ip"] == "203.0.113.7"
    assert payload["status_code"] == 200
    assert payload["path"] == "/jwks"


@pytest.mark.asyncio
async def test_probe_requests_log_at_debug_and_misses_at_warning(monkeypatch) -> None:
    """Probes are quiet; unknown paths are surfaced as warnings."""
    capture = _CaptureLogger()
    monkeypatch.setattr(logging_module, "logger", capture)

    async with AsyncClient(
        transport=ASGITransport(app=_build_app()), base_url="http://testserver"
    ) as client:
        await client.get("/health/live")
        await client.get("/missing")

    assert [call[0] for call in capture.calls] == ["debug", "warning"]


@pytest.mark.asyncio
async def test_correlation_id_is_echoed_or_generated() -> None:
    """Well-formed inbound IDs are echoed; missing ones are generated."""
    async with AsyncClient(
        transport=ASGITransport(app=_build_app()), base_url="http://testserver"
    ) as client:
        echoed = await client.get("/jwks", headers={CORRELATION_ID_HEADER: "req-123"})
        generated = await client.get("/jwks")

    assert echoed.headers[CORRELATION_ID_HEADER] == "req-123"
    assert len(generated.headers[CORRELATION_ID_HEADER]) == 36


def test_untrusted_correlation_ids_are_replaced() -> None:
    """Oversized or log-unsafe inbound IDs are not propagated."""
    assert resolve_correlation_id("abc-1.2:3_4") == "abc-1.2:3_4"
    assert resolve_correlation_id("x" * 200) != "x" * 200
    assert resolve_correlation_id("bad\nvalue") != "bad\nvalue"
    assert resolve_correlation_id("") != ""
