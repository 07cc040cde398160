"""Shared dataclasses and lightweight types used across modules."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from bin_locator.validation import is_valid

# Epoch values above this are milliseconds (the mobile app sends Date.now()).
_EPOCH_MILLIS_THRESHOLD = 1e11

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)


def utc_now() -> datetime:
    """Default clock for arbitration, freshness and the scheduler."""
    return datetime.now(timezone.utc)


def coerce_timestamp(value: Any) -> Optional[datetime]:
    """Normalize datetimes, epoch seconds/millis and ISO strings to aware UTC datetimes."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, bool):
        raise TypeError(f"Unsupported timestamp value: {value!r}")
    if isinstance(value, (int, float)):
        try:
            seconds = value / 1000.0 if value > _EPOCH_MILLIS_THRESHOLD else float(value)
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"Timestamp out of range: {value!r}") from exc
    if isinstance(value, str):
        try:
            return coerce_timestamp(float(value))
        except ValueError:
            pass
        return coerce_timestamp(datetime.fromisoformat(value.replace("Z", "+00:00")))
    raise TypeError(f"Unsupported timestamp value: {value!r}")


def to_epoch_micros(ts: datetime) -> int:
    """Exact integer microseconds since the epoch, for storage backends."""
    return (ts - _EPOCH) // _MICROSECOND


def from_epoch_micros(value) -> datetime:
    return _EPOCH + timedelta(microseconds=int(value))


@dataclass(frozen=True)
class Coordinate:
    """A GPS fix. Latitude/longitude may be missing, which makes it invalid."""
    latitude: Optional[float]
    longitude: Optional[float]
    timestamp: datetime  # timezone-aware, UTC

    @property
    def is_valid(self) -> bool:
        return is_valid(self.latitude, self.longitude)

    def to_dict(self) -> dict:
        """Return a JSON-friendly dict."""
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class BackupRecord:
    """Last-known-good coordinate for a bin, with write metadata."""
    coordinate: Coordinate
    source: str
    saved_at: datetime

    def to_dict(self) -> dict:
        return {
            **self.coordinate.to_dict(),
            "source": self.source,
            "saved_at": self.saved_at.isoformat(),
        }


class UpsertResult(str, Enum):
    """Outcome of a monotonic backup write."""
    COMMITTED = "committed"
    REJECTED_STALE = "rejected_stale"


class DisplaySource(str, Enum):
    """Where a display coordinate came from."""
    LIVE = "live"
    BACKUP = "backup"
    NONE = "none"


@dataclass(frozen=True)
class DisplayCoordinate:
    """Best-effort answer to "where is this bin now"."""
    bin_id: str
    coordinate: Coordinate
    source: DisplaySource
