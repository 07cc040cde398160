"""Dict-backed live source for development, demos and tests."""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

from bin_locator.app_types import Coordinate
from bin_locator.live_sources.base import LiveReadingSource
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="live_sources/in_memory_live_source")


class InMemoryLiveSource(LiveReadingSource):
    """Holds the latest reading per bin; insertion order is fleet order."""

    def __init__(self, readings: Optional[Dict[str, Optional[Coordinate]]] = None) -> None:
        self._readings: Dict[str, Optional[Coordinate]] = dict(readings or {})
        self._lock = threading.Lock()

    def set_reading(self, bin_id: str, reading: Optional[Coordinate]) -> None:
        """Record a reading (or register a bin with no reading yet)."""
        with self._lock:
            self._readings[bin_id] = reading

    def remove(self, bin_id: str) -> None:
        with self._lock:
            self._readings.pop(bin_id, None)

    def get_live_reading(self, bin_id: str) -> Optional[Coordinate]:
        with self._lock:
            return self._readings.get(bin_id)

    def list_bin_ids(self) -> List[str]:
        with self._lock:
            return list(self._readings)

    def ping(self) -> None:
        return None
