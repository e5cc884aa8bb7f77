"""OIDC discovery document schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ProviderMetadata(BaseModel):
    """OpenID Connect provider metadata as published by the API server.

    Fields the Kubernetes API server may add beyond the ones modelled here are
    kept and republished unchanged.
    """

    model_config = ConfigDict(extra="allow")

    issuer: str = Field(min_length=1)
    jwks_uri: str = Field(min_length=1)
    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    response_types_supported: list[str] | None = None
    subject_types_supported: list[str] | None = None
    id_token_signing_alg_values_supported: list[str] | None = None

    def republished(self, jwks_path: str) -> ProviderMetadata:
        """Return a copy pointing clients at this service instead of the API server."""
        base = self.issuer.rstrip("/")
        updates: dict[str, str] = {"jwks_uri": f"{base}{jwks_path}"}
        # Verifier libraries reject documents without these; the API server never sets them.
        if not self.authorization_endpoint:
            updates["authorization_endpoint"] = f"{base}/nonexistent"
        if not self.token_endpoint:
            updates["token_endpoint"] = f"{base}/nonexistent"
        return self.model_copy(update=updates)
