"""Application settings and logging configuration."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_CONTEXT: dict[str, str] = {"environment": "development", "service": "oidc-republisher"}


class AppSettings(BaseModel):
    """Application identity and runtime settings."""

    environment: Literal["development", "staging", "production"] = "production"
    service: str = "oidc-republisher"
    host: str = "localhost"
    port: int = Field(default=8080, ge=0, le=65535)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    metrics_enabled: bool = Field(
        default=True,
        description="Serve /metrics on the public listener alongside the discovery documents.",
    )


class UpstreamSettings(BaseModel):
    """Kubernetes API server connection settings."""

    kubeconfig: str | None = Field(
        default=None,
        description="Path to a kubeconfig file; in-cluster configuration is used when unset.",
    )
    discovery_path: str = "/.well-known/openid-configuration"
    fetch_timeout_seconds: float = Field(default=30.0, gt=0)


class RefreshSettings(BaseModel):
    """Background refresh and shutdown timing."""

    interval_seconds: float = Field(default=300.0, gt=0)
    shutdown_grace_seconds: float = Field(default=5.0, ge=0)


class PublishSettings(BaseModel):
    """Public URL layout of the republished documents."""

    jwks_path: str = "/jwks"

    @field_validator("jwks_path")
    @classmethod
    def validate_jwks_path(cls, value: str) -> str:
        """Ensure the JWKS path is absolute."""
        if not value.startswith("/"):
            raise ValueError("publish.jwks_path must start with '/'.")
        return value.rstrip("/") or "/"


class Settings(BaseSettings):
    """Root application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=AppSettings)
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    refresh: RefreshSettings = Field(default_factory=RefreshSettings)
    publish: PublishSettings = Field(default_factory=PublishSettings)


def _standard_log_fields(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Inject required structured logging fields."""
    context_vars = structlog.contextvars.get_contextvars()
    event_dict.setdefault("correlation_id", str(context_vars.get("correlation_id", "none")))
    event_dict.setdefault("environment", _LOG_CONTEXT["environment"])
    event_dict.setdefault("service", _LOG_CONTEXT["service"])
    event_dict.setdefault("timestamp", datetime.now(UTC).isoformat())
    return event_dict


def configure_structlog(settings: Settings) -> None:
    """Configure structlog for JSON output with required fields."""
    _LOG_CONTEXT["environment"] = settings.app.environment
    _LOG_CONTEXT["service"] = settings.app.service

    log_level = getattr(logging, settings.app.log_level, logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            _standard_log_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@lru_cache
def get_settings() -> Settings:
    """Load and cache application settings from environment variables."""
    return Settings()
