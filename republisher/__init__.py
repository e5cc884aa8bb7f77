"""Republish a Kubernetes API server's OIDC discovery document and JWKS."""

__version__ = "0.1.0"
