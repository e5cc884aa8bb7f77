"""Exception hierarchy for the republisher service."""

from __future__ import annotations


class RepublisherError(Exception):
    """Base class for all republisher-specific exceptions."""


class ConfigError(RepublisherError):
    """Raised when cluster credentials or settings are unusable at startup."""


class UpstreamError(RepublisherError):
    """Base class for failures talking to the upstream API server."""

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        """Initialize with optional HTTP status code context."""
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class UpstreamUnavailableError(UpstreamError):
    """Raised when the API server is unreachable or answers with a 5xx."""


class UpstreamResponseError(UpstreamError):
    """Raised when the API server rejects the request with a 4xx."""


class FetchError(RepublisherError):
    """Raised when one discovery fetch cycle fails at a given stage."""

    def __init__(self, detail: str, stage: str, path: str | None = None) -> None:
        """Initialize with the failing stage and upstream path."""
        super().__init__(f"{stage}: {detail}")
        self.detail = detail
        self.stage = stage
        self.path = path


class TransportError(FetchError):
    """Raised when an upstream GET fails during a fetch cycle."""


class ParseError(FetchError):
    """Raised when an upstream document is malformed or missing required fields."""


class SerializationError(RepublisherError):
    """Raised when a cached document cannot be rendered for a response."""
