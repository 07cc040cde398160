"""In-memory backup store, intended for development and tests."""

import threading
from typing import Callable, Dict, Optional

from bin_locator.app_types import BackupRecord, Coordinate, UpsertResult, utc_now
from bin_locator.backup_store.base import DEFAULT_SOURCE, BackupStore, ensure_valid

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="backup_store/in_memory_backup_store")


class InMemoryBackupStore(BackupStore):
    """Thread-safe in-memory store (dev/test)."""

    def __init__(self, clock: Callable = utc_now) -> None:
        logger.debug("Initializing InMemoryBackupStore")
        self._clock = clock
        self._backups: Dict[str, BackupRecord] = {}
        self._lock = threading.Lock()

    def get(self, bin_id: str) -> Optional[BackupRecord]:
        with self._lock:
            return self._backups.get(bin_id)

    def upsert(self, bin_id: str, coordinate: Coordinate, source: str = DEFAULT_SOURCE) -> UpsertResult:
        """Commit the coordinate unless the stored backup is as new or newer."""
        ensure_valid(coordinate)
        with self._lock:
            current = self._backups.get(bin_id)
            if current is not None and coordinate.timestamp <= current.coordinate.timestamp:
                logger.debug(
                    "Rejecting stale backup write",
                    extra={"bin_id": bin_id, "stored": current.coordinate.timestamp.isoformat()},
                )
                return UpsertResult.REJECTED_STALE
            self._backups[bin_id] = BackupRecord(coordinate=coordinate, source=source, saved_at=self._clock())
            return UpsertResult.COMMITTED

    def list_backups(self) -> Dict[str, BackupRecord]:
        with self._lock:
            return dict(self._backups)

    def ping(self) -> None:
        return None

    def clear(self) -> None:
        with self._lock:
            self._backups.clear()
