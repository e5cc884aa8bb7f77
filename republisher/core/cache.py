"""Snapshot cache shared between the refresh loop and request handlers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from threading import Lock

from republisher.schemas.discovery import ProviderMetadata


@dataclass(frozen=True)
class Snapshot:
    """Republished metadata and keys from one successful fetch cycle."""

    metadata: ProviderMetadata | None
    jwks: bytes
    fetched_at: datetime | None
    ok: bool

    @classmethod
    def empty(cls) -> Snapshot:
        """Placeholder returned before the first successful fetch."""
        return cls(metadata=None, jwks=b"", fetched_at=None, ok=False)


class SnapshotCache:
    """Hold the latest snapshot; writes replace the whole value at once."""

    def __init__(self) -> None:
        self._snapshot = Snapshot.empty()
        self._lock = Lock()

    def get(self) -> Snapshot:
        """Return the latest committed snapshot."""
        with self._lock:
            return self._snapshot

    def set(self, snapshot: Snapshot) -> None:
        """Replace the current snapshot."""
        with self._lock:
            self._snapshot = snapshot
