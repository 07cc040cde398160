"""Live/backup arbitration: which coordinate should a caller see for a bin."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from bin_locator.app_types import BackupRecord, Coordinate, DisplayCoordinate, DisplaySource, utc_now
from bin_locator.backup_store import BackupStore
from bin_locator.live_sources import LiveReadingSource
from bin_locator.validation import is_usable_live
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="arbitration")


def decide(
    live: Optional[Coordinate],
    backup: Optional[BackupRecord],
    now: datetime,
    window: Optional[timedelta] = None,
) -> Tuple[Optional[Coordinate], DisplaySource]:
    """Pick the display coordinate from a live reading and a stored backup.

    Live wins when it is present, valid and fresh. Otherwise the backup is
    used (it is valid by construction). With neither, the answer is
    (None, NONE); there is no default location.
    """
    if is_usable_live(live, now, window):
        return live, DisplaySource.LIVE
    if backup is not None:
        return backup.coordinate, DisplaySource.BACKUP
    return None, DisplaySource.NONE


class ArbitrationEngine:
    """Reads both inputs fresh on every call; decisions are never cached."""

    def __init__(
        self,
        live_source: LiveReadingSource,
        backup_store: BackupStore,
        *,
        freshness_window: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.live_source = live_source
        self.backup_store = backup_store
        self.freshness_window = freshness_window
        self.clock = clock

    def read_state(self, bin_id: str) -> Tuple[Optional[Coordinate], Optional[BackupRecord]]:
        """Return (live, backup) for a bin; StorageUnavailable propagates."""
        live = self.live_source.get_live_reading(bin_id)
        backup = self.backup_store.get(bin_id)
        return live, backup

    def display_coordinate(self, bin_id: str) -> Optional[DisplayCoordinate]:
        """Return the best-effort location for a bin, or None if nothing usable exists."""
        live, backup = self.read_state(bin_id)
        coordinate, source = decide(live, backup, self.clock(), self.freshness_window)
        if coordinate is None:
            logger.debug(f"No usable location for bin {bin_id}")
            return None
        if source is DisplaySource.BACKUP:
            logger.debug(f"Live GPS unusable for bin {bin_id}; serving backup")
        return DisplayCoordinate(bin_id=bin_id, coordinate=coordinate, source=source)
