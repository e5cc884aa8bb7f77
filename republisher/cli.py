"""Process entrypoint for the OIDC republisher."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence

import structlog
from pydantic import ValidationError

from republisher.config import Settings, configure_structlog, get_settings
from republisher.core.kubeconfig import resolve_connection
from republisher.exceptions import ConfigError
from republisher.lifecycle import LifecycleManager

logger = structlog.get_logger(__name__)


def parse_listen_address(value: str) -> tuple[str, int]:
    """Split HOST:PORT, accepting bracketed IPv6 hosts and an empty host."""
    host, separator, port = value.rpartition(":")
    if not separator:
        raise argparse.ArgumentTypeError(f"listen address {value!r} must be HOST:PORT")
    try:
        port_number = int(port)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid port in listen address {value!r}") from exc
    if not 0 <= port_number <= 65535:
        raise argparse.ArgumentTypeError(f"invalid port in listen address {value!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host or "0.0.0.0", port_number


def _build_parser() -> argparse.ArgumentParser:
    """Build command-line parser."""
    parser = argparse.ArgumentParser(
        prog="republisher",
        description="Republish the API server's OIDC discovery document and JWKS.",
    )
    parser.add_argument(
        "--listen",
        type=parse_listen_address,
        default=None,
        help="Address to listen on (default localhost:8080).",
    )
    parser.add_argument(
        "--kubeconfig",
        default=None,
        help="Path to kubeconfig file, otherwise in-cluster configuration is used.",
    )
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Return settings with command-line flags taking precedence."""
    updates: dict[str, object] = {}
    if args.listen is not None:
        host, port = args.listen
        updates["app"] = settings.app.model_copy(update={"host": host, "port": port})
    if args.kubeconfig:
        updates["upstream"] = settings.upstream.model_copy(update={"kubeconfig": args.kubeconfig})
    return settings.model_copy(update=updates) if updates else settings


async def _run(settings: Settings) -> int:
    """Resolve the cluster connection and run until shutdown."""
    try:
        connection = resolve_connection(settings.upstream.kubeconfig)
    except ConfigError as exc:
        logger.error("config_error", error=str(exc), kubeconfig=settings.upstream.kubeconfig)
        return 1

    logger.info("upstream_resolved", server=connection.server)
    async with connection.build_client() as upstream:
        manager = LifecycleManager.from_settings(settings, upstream)
        return await manager.run()


def main(argv: Sequence[str] | None = None) -> int:
    """Run the republisher."""
    args = _build_parser().parse_args(argv)
    try:
        settings = apply_overrides(get_settings(), args)
    except ValidationError as exc:
        logger.error("config_error", error=str(exc))
        return 1
    configure_structlog(settings)
    return asyncio.run(_run(settings))


if __name__ == "__main__":
    raise SystemExit(main())
