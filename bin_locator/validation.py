"""Coordinate validity and freshness checks.

Everything here is pure: no I/O, no logging, no exceptions.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from numbers import Real
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from bin_locator.app_types import Coordinate

LATITUDE_RANGE = (-90.0, 90.0)
LONGITUDE_RANGE = (-180.0, 180.0)


def _finite_number(value) -> bool:
    """Return True for real, finite numbers (bools are not numbers here)."""
    if value is None or isinstance(value, bool) or not isinstance(value, Real):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # ints too large for a float are out of range anyway
        return False


def is_valid(latitude, longitude) -> bool:
    """Return True if (latitude, longitude) is a plausible, non-sentinel Earth coordinate.

    Checked in order: both values present and finite, both within range,
    and not the (0, 0) "no fix" sentinel.
    """
    if not (_finite_number(latitude) and _finite_number(longitude)):
        return False
    if not LATITUDE_RANGE[0] <= latitude <= LATITUDE_RANGE[1]:
        return False
    if not LONGITUDE_RANGE[0] <= longitude <= LONGITUDE_RANGE[1]:
        return False
    return not (latitude == 0 and longitude == 0)


def is_fresh(coordinate: Coordinate, now: datetime, window: Optional[timedelta]) -> bool:
    """Return True if the coordinate is within the freshness window (always True when unset)."""
    if window is None:
        return True
    return now - coordinate.timestamp <= window


def is_usable_live(coordinate: Optional[Coordinate], now: datetime, window: Optional[timedelta]) -> bool:
    """A live reading is usable when present, valid and fresh."""
    if coordinate is None:
        return False
    return coordinate.is_valid and is_fresh(coordinate, now, window)
