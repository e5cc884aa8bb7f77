"""Global exception handlers enforcing the API error response contract."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from republisher.exceptions import SerializationError

VALID_ERROR_CODES = {
    "not_found",
    "method_not_allowed",
    "invalid_request",
    "not_ready",
    "internal_error",
}

_DEFAULT_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "invalid_request",
    404: "not_found",
    405: "method_not_allowed",
    422: "invalid_request",
    503: "not_ready",
}

INTERNAL_ERROR_DETAIL = "Internal server error."

logger = structlog.get_logger(__name__)


def _error_response(status_code: int, detail: str, code: str) -> JSONResponse:
    """Build standardized JSON error payload."""
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code})


def _resolve_error_code(status_code: int, raw_code: str | None) -> str:
    """Resolve a valid machine-readable error code."""
    if raw_code in VALID_ERROR_CODES:
        return raw_code
    if status_code >= 500:
        return _DEFAULT_ERROR_CODE_BY_STATUS.get(status_code, "internal_error")
    return _DEFAULT_ERROR_CODE_BY_STATUS.get(status_code, "invalid_request")


def _extract_detail_and_code(detail: Any) -> tuple[str, str | None]:
    """Normalize exception detail payload into message and optional code."""
    if isinstance(detail, dict):
        raw_detail = detail.get("detail", "Request failed.")
        raw_code = detail.get("code")
        return str(raw_detail), str(raw_code) if raw_code is not None else None
    if isinstance(detail, str):
        return detail, None
    return "Request failed.", None


def _correlation_id(request: Request) -> str:
    return getattr(
        request.state,
        "correlation_id",
        request.headers.get("x-correlation-id", "unknown"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers enforcing error shape contract."""

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Normalize framework HTTP exceptions to contract payload."""
        del request
        detail, raw_code = _extract_detail_and_code(exc.detail)
        code = _resolve_error_code(exc.status_code, raw_code)
        return _error_response(status_code=exc.status_code, detail=detail, code=code)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Map request validation errors to standardized payload."""
        del request, exc
        return _error_response(status_code=422, detail="Invalid request.", code="invalid_request")

    @app.exception_handler(SerializationError)
    async def handle_serialization_error(request: Request, exc: SerializationError) -> JSONResponse:
        """Hide rendering failures behind a fixed 500 payload."""
        logger.error(
            "serialization_failed",
            correlation_id=_correlation_id(request),
            path=request.url.path,
            error=str(exc),
            cause=repr(exc.__cause__) if exc.__cause__ is not None else None,
        )
        return _error_response(status_code=500, detail=INTERNAL_ERROR_DETAIL, code="internal_error")

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
        """Mask internal errors and enforce contract payload."""
        logger.error(
            "unhandled_exception",
            correlation_id=_correlation_id(request),
            path=request.url.path,
            method=request.method,
            error=str(exc),
        )
        return _error_response(status_code=500, detail=INTERNAL_ERROR_DETAIL, code="internal_error")
