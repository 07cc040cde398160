"""Shared protocol for backup coordinate storage backends."""

from typing import Dict, Optional, Protocol

from bin_locator.app_types import BackupRecord, Coordinate, UpsertResult
from bin_locator.errors import InvalidCoordinate

DEFAULT_SOURCE = "scheduler"


class BackupStore(Protocol):
    """Protocol for per-bin backup storage.

    Backends enforce the monotonic-write rule themselves: an upsert only
    commits when its timestamp is strictly newer than the stored one. All
    operations raise StorageUnavailable when the backend cannot be reached.
    """

    def get(self, bin_id: str) -> Optional[BackupRecord]:
        """Return the stored backup, or None if the bin never had one."""

    def upsert(self, bin_id: str, coordinate: Coordinate, source: str = DEFAULT_SOURCE) -> UpsertResult:
        """Write the coordinate if it is newer than the stored backup."""

    def list_backups(self) -> Dict[str, BackupRecord]:
        """Return every stored backup keyed by bin id."""

    def ping(self) -> None:
        """Raise StorageUnavailable if the backend is unreachable."""

    def clear(self) -> None:
        """Remove all stored backups."""


def ensure_valid(coordinate: Coordinate) -> None:
    """Refuse to store anything that fails validation."""
    if not coordinate.is_valid:
        raise InvalidCoordinate(coordinate.latitude, coordinate.longitude)
