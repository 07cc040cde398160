"""Interfaces for the live-reading and fleet-listing collaborators."""

from __future__ import annotations

from typing import List, Optional, Protocol

from bin_locator.app_types import Coordinate


class LiveReadingSource(Protocol):
    """Anything that can report the latest device fix per bin and list the fleet.

    Implementations raise StorageUnavailable when their backend cannot be
    reached; a bin with no reading yields None.
    """

    def get_live_reading(self, bin_id: str) -> Optional[Coordinate]:
        """Return the most recent reported reading for a bin."""
        ...

    def list_bin_ids(self) -> List[str]:
        """Return every known bin id, in a stable order."""
        ...

    def ping(self) -> None:
        """Raise StorageUnavailable if the source is unreachable."""
        ...
