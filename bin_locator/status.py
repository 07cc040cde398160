"""Read-only per-bin and fleet-wide location status."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from bin_locator.app_types import BackupRecord, Coordinate, DisplaySource
from bin_locator.arbitration import ArbitrationEngine, decide
from bin_locator.errors import NotFound
from bin_locator.validation import is_fresh


@dataclass(frozen=True)
class CoordinateStatus:
    valid: bool
    coordinate: Optional[Coordinate]
    source: Optional[str] = None  # backup write tag; None for live
    fresh: Optional[bool] = None  # live only: within the freshness window

    @property
    def timestamp(self):
        return self.coordinate.timestamp if self.coordinate else None

    def to_dict(self) -> dict:
        c = self.coordinate
        out = {
            "valid": self.valid,
            "latitude": c.latitude if c else None,
            "longitude": c.longitude if c else None,
            "timestamp": c.timestamp.isoformat() if c else None,
        }
        if self.source is not None:
            out["source"] = self.source
        if self.fresh is not None:
            out["fresh"] = self.fresh
        return out


@dataclass(frozen=True)
class BinStatus:
    bin_id: str
    live: CoordinateStatus
    backup: CoordinateStatus
    display_source: DisplaySource

    def to_dict(self) -> dict:
        return {
            "binId": self.bin_id,
            "liveGPS": self.live.to_dict(),
            "backupGPS": self.backup.to_dict(),
            "displaySource": self.display_source.value,
        }


class StatusReporter:
    """Composes the validator, backup store and arbitration rule; never writes."""

    def __init__(self, engine: ArbitrationEngine) -> None:
        self.engine = engine

    def _compose(self, bin_id: str, live: Optional[Coordinate], backup: Optional[BackupRecord]) -> BinStatus:
        engine = self.engine
        now = engine.clock()
        _coordinate, source = decide(live, backup, now, engine.freshness_window)
        return BinStatus(
            bin_id=bin_id,
            live=CoordinateStatus(
                valid=bool(live and live.is_valid),
                coordinate=live,
                fresh=is_fresh(live, now, engine.freshness_window) if live else None,
            ),
            backup=CoordinateStatus(
                valid=backup is not None,
                coordinate=backup.coordinate if backup else None,
                source=backup.source if backup else None,
            ),
            display_source=source,
        )

    def bin_status(self, bin_id: str) -> BinStatus:
        """Status for one bin; NotFound when it has neither a live reading nor a backup."""
        live, backup = self.engine.read_state(bin_id)
        if live is None and backup is None:
            raise NotFound(bin_id)
        return self._compose(bin_id, live, backup)

    def fleet_status(self) -> List[BinStatus]:
        """Status for every known bin, in fleet-listing order."""
        out: List[BinStatus] = []
        for bin_id in self.engine.live_source.list_bin_ids():
            live, backup = self.engine.read_state(bin_id)
            out.append(self._compose(bin_id, live, backup))
        return out

    @staticmethod
    def fleet_summary(statuses: List[BinStatus]) -> Dict[str, int]:
        """Count bins per display source."""
        counts = {source.value: 0 for source in DisplaySource}
        for status in statuses:
            counts[status.display_source.value] += 1
        counts["total"] = len(statuses)
        return counts
