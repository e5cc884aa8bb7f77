"""Kubernetes API server connection resolution from kubeconfig or in-cluster credentials."""

from __future__ import annotations

import base64
import binascii
import os
import ssl
import tempfile
from collections.abc import Generator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import yaml

from republisher.core.upstream import UpstreamClient
from republisher.exceptions import ConfigError

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")


class BearerTokenAuth(httpx.Auth):
    """Attach a bearer token, re-reading it from disk when backed by a file.

    Projected service account tokens are rotated in place by the kubelet.
    """

    def __init__(self, token: str | None = None, token_file: str | Path | None = None) -> None:
        if token is None and token_file is None:
            raise ValueError("Either token or token_file is required.")
        self._token = token
        self._token_file = Path(token_file) if token_file is not None else None

    def current_token(self) -> str:
        """Return the token to send with the next request."""
        if self._token_file is None:
            return self._token or ""
        try:
            return self._token_file.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Unable to read token file {self._token_file}: {exc}") from exc

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self.current_token()}"
        yield request


@dataclass(frozen=True)
class ClusterConnection:
    """Resolved API server endpoint, TLS settings and credentials."""

    server: str
    verify: ssl.SSLContext | bool
    auth: httpx.Auth | None = None

    def build_client(self) -> UpstreamClient:
        """Create an upstream client bound to this connection."""
        return UpstreamClient(base_url=self.server, verify=self.verify, auth=self.auth)


def load_in_cluster_connection(
    environ: Mapping[str, str] | None = None,
    service_account_dir: Path = SERVICE_ACCOUNT_DIR,
) -> ClusterConnection:
    """Resolve the API server from the pod's service account mount."""
    env = os.environ if environ is None else environ
    host = env.get("KUBERNETES_SERVICE_HOST", "").strip()
    port = env.get("KUBERNETES_SERVICE_PORT", "").strip()
    if not host or not port:
        raise ConfigError(
            "Unable to load in-cluster configuration, KUBERNETES_SERVICE_HOST and "
            "KUBERNETES_SERVICE_PORT must be defined."
        )
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"

    token_file = service_account_dir / "token"
    ca_file = service_account_dir / "ca.crt"
    if not token_file.is_file():
        raise ConfigError(f"Service account token not found at {token_file}.")
    if not ca_file.is_file():
        raise ConfigError(f"Service account CA bundle not found at {ca_file}.")

    return ClusterConnection(
        server=f"https://{host}:{port}",
        verify=_build_ssl_context(ca_file=str(ca_file)),
        auth=BearerTokenAuth(token_file=token_file),
    )


def load_kubeconfig_connection(path: str | Path) -> ClusterConnection:
    """Resolve the API server from the current context of a kubeconfig file."""
    kubeconfig_path = Path(path).expanduser()
    try:
        with kubeconfig_path.open("r", encoding="utf-8") as handle:
            document = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigError(f"Unable to read kubeconfig {kubeconfig_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid kubeconfig {kubeconfig_path}: {exc}") from exc

    if not isinstance(document, dict):
        raise ConfigError(f"Invalid kubeconfig {kubeconfig_path}: expected a mapping.")

    base_dir = kubeconfig_path.parent
    context_name = document.get("current-context")
    if not context_name:
        raise ConfigError("Kubeconfig has no current-context.")
    context = _named_entry(document, "contexts", "context", context_name)
    cluster = _named_entry(document, "clusters", "cluster", context.get("cluster"))
    user: dict[str, Any] = {}
    if context.get("user"):
        user = _named_entry(document, "users", "user", context["user"])

    server = cluster.get("server")
    if not server:
        raise ConfigError(f"Cluster {context.get('cluster')!r} has no server.")

    if cluster.get("insecure-skip-tls-verify"):
        verify: ssl.SSLContext | bool = False
    else:
        verify = _build_ssl_context(
            ca_file=_resolve_path(base_dir, cluster.get("certificate-authority")),
            ca_data=_decode_data(
                cluster.get("certificate-authority-data"), "certificate-authority-data"
            ),
        )

    cert_file = _resolve_path(base_dir, user.get("client-certificate"))
    key_file = _resolve_path(base_dir, user.get("client-key"))
    cert_data = _decode_data(user.get("client-certificate-data"), "client-certificate-data")
    key_data = _decode_data(user.get("client-key-data"), "client-key-data")
    if isinstance(verify, ssl.SSLContext):
        _load_client_certificate(verify, cert_file, key_file, cert_data, key_data)
    elif cert_file or cert_data:
        verify = _build_ssl_context(verify=False)
        _load_client_certificate(verify, cert_file, key_file, cert_data, key_data)

    auth: httpx.Auth | None = None
    if user.get("token"):
        auth = BearerTokenAuth(token=str(user["token"]))
    elif user.get("tokenFile"):
        auth = BearerTokenAuth(token_file=_resolve_path(base_dir, user["tokenFile"]))

    return ClusterConnection(server=str(server), verify=verify, auth=auth)


def resolve_connection(kubeconfig: str | None) -> ClusterConnection:
    """Use the kubeconfig file when given, otherwise in-cluster configuration."""
    if kubeconfig:
        return load_kubeconfig_connection(kubeconfig)
    return load_in_cluster_connection()


def _named_entry(document: dict[str, Any], section: str, key: str, name: Any) -> dict[str, Any]:
    """Find one named entry of a kubeconfig list section."""
    for item in document.get(section) or []:
        if isinstance(item, dict) and item.get("name") == name:
            value = item.get(key)
            if isinstance(value, dict):
                return value
    raise ConfigError(f"Kubeconfig {section} entry {name!r} not found.")


def _resolve_path(base_dir: Path, value: Any) -> str | None:
    """Resolve kubeconfig paths relative to the kubeconfig file."""
    if not value:
        return None
    candidate = Path(str(value)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return str(candidate)


def _decode_data(value: Any, field_name: str) -> bytes | None:
    """Decode base64 inline kubeconfig data."""
    if not value:
        return None
    try:
        return base64.b64decode(str(value), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigError(f"Kubeconfig field {field_name} is not valid base64.") from exc


def _build_ssl_context(
    ca_file: str | None = None,
    ca_data: bytes | None = None,
    verify: bool = True,
) -> ssl.SSLContext:
    """Build a client TLS context trusting the cluster CA."""
    try:
        if not verify:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            return context
        context = ssl.create_default_context(cafile=ca_file)
        if ca_data:
            context.load_verify_locations(cadata=ca_data.decode("utf-8"))
    except (OSError, ssl.SSLError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Unable to load cluster CA: {exc}") from exc
    return context


def _load_client_certificate(
    context: ssl.SSLContext,
    cert_file: str | None,
    key_file: str | None,
    cert_data: bytes | None,
    key_data: bytes | None,
) -> None:
    """Load the user's client certificate from files or inline data."""
    if not (cert_file or cert_data):
        return
    if not (key_file or key_data):
        raise ConfigError("Kubeconfig user has a client certificate but no client key.")
    try:
        # load_cert_chain only accepts paths; inline data is staged and removed immediately.
        with tempfile.TemporaryDirectory(prefix="republisher-") as staging:
            if cert_data:
                cert_file = _stage(Path(staging) / "client.crt", cert_data)
            if key_data:
                key_file = _stage(Path(staging) / "client.key", key_data)
            context.load_cert_chain(certfile=cert_file, keyfile=key_file)
    except (OSError, ssl.SSLError) as exc:
        raise ConfigError(f"Unable to load client certificate: {exc}") from exc


def _stage(path: Path, data: bytes) -> str:
    path.write_bytes(data)
    path.chmod(0o600)
    return str(path)
