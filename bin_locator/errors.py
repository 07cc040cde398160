"""Error kinds raised by the GPS resiliency layer."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bin_locator.scheduler import SweepReport


class BinLocatorError(Exception):
    """Base class for all service errors."""


class InvalidCoordinate(BinLocatorError, ValueError):
    """A coordinate failed validation (client error)."""

    def __init__(self, latitude, longitude, message: str | None = None) -> None:
        self.latitude = latitude
        self.longitude = longitude
        super().__init__(message or f"Invalid coordinates: latitude={latitude!r}, longitude={longitude!r}")


class NotFound(BinLocatorError, LookupError):
    """No location state exists for the requested bin."""

    def __init__(self, bin_id: str, message: str | None = None) -> None:
        self.bin_id = bin_id
        super().__init__(message or f"Bin {bin_id} not found")


class StorageUnavailable(BinLocatorError):
    """Transient infrastructure failure; safe for the caller to retry."""


class SweepAlreadyRunning(BinLocatorError):
    """A sweep was requested without waiting while another one is in flight."""


class PartialSweepFailure(BinLocatorError):
    """One or more bins failed during a sweep."""

    def __init__(self, report: "SweepReport") -> None:
        self.report = report
        failed = ", ".join(r.bin_id for r in report.failed)
        super().__init__(f"Sweep finished with {len(report.failed)} failed bin(s): {failed}")
