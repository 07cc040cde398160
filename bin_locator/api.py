"""HTTP API for bin GPS display coordinates, backups and sweep control."""

import hmac
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .app_types import BackupRecord, Coordinate, DisplaySource, UpsertResult
from .check_storage import get_storage_status
from .config import settings
from .errors import InvalidCoordinate, NotFound
from .scheduler import SweepTrigger
from .service import MANUAL_SOURCE, MOBILE_DEFAULT_SOURCE, Services, get_services, save_backup
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="bin_locator/api")


def require_api_key(x_api_key: str | None = Header(default=None)):
    """
    Validate the X-API-Key header against the configured static key.

    With no key configured every request is allowed (dev/default mode).
    """
    if not settings.api_key:
        return

    if not x_api_key:
        logger.debug("No API key provided")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    if hmac.compare_digest(str(x_api_key), str(settings.api_key)):
        return

    logger.debug("Invalid API key provided")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


router = APIRouter(dependencies=[Depends(require_api_key)])


class _ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CoordinatesPayload(_ApiModel):
    """A coordinate as returned to clients."""
    latitude: float
    longitude: float
    timestamp: datetime
    source: Optional[str] = None
    saved_at: Optional[datetime] = None


class DisplayResponse(_ApiModel):
    success: bool = True
    bin_id: str
    coordinates: CoordinatesPayload
    source: DisplaySource


class BackupResponse(_ApiModel):
    success: bool = True
    bin_id: str
    coordinates: CoordinatesPayload


class ManualBackupRequest(_ApiModel):
    """Operator-supplied coordinate; validated by hand so bad values map to 400."""
    latitude: Any = None
    longitude: Any = None
    timestamp: Any = None


class ManualBackupResponse(_ApiModel):
    success: bool = True
    message: str
    committed: bool
    coordinates: CoordinatesPayload


class SaveRequest(ManualBackupRequest):
    """Mobile app backup payload."""
    bin_id: Optional[str | int] = None  # the mobile app may send numeric ids
    source: Optional[str] = None


class SaveResponse(_ApiModel):
    success: bool = True
    message: str
    committed: bool
    data: CoordinatesPayload


class MobileBackupResponse(_ApiModel):
    success: bool = True
    data: CoordinatesPayload


class AllBackupsResponse(_ApiModel):
    success: bool = True
    data: Dict[str, CoordinatesPayload]


class StatusResponse(_ApiModel):
    success: bool = True
    status: Dict[str, Any]


class SweepResponse(_ApiModel):
    success: bool = True
    message: str
    report: Dict[str, Any]


class BinsStatusResponse(_ApiModel):
    success: bool = True
    bins: List[Dict[str, Any]]
    summary: Optional[Dict[str, int]] = None


class BinStatusResponse(_ApiModel):
    success: bool = True
    bin_id: str
    status: Dict[str, Any]


def _coordinates(coordinate: Coordinate, record: BackupRecord | None = None) -> CoordinatesPayload:
    """Serialize a coordinate, with backup metadata when available."""
    return CoordinatesPayload(
        latitude=coordinate.latitude,
        longitude=coordinate.longitude,
        timestamp=coordinate.timestamp,
        source=record.source if record else None,
        saved_at=record.saved_at if record else None,
    )


def _as_number(value: Any) -> Any:
    """Accept numeric strings the way the mobile client sends them; leave anything else to validation."""
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return value
    return value


@router.get("/status", response_model=StatusResponse)
def get_status(services: Services = Depends(get_services)):
    """Scheduler health, last sweep summary and storage reachability."""
    return StatusResponse(status={**services.scheduler.status(), "storage": get_storage_status(services)})


@router.get("/backup/{bin_id}", response_model=BackupResponse)
def get_backup_coordinates(bin_id: str, services: Services = Depends(get_services)):
    """Return the stored backup for a bin."""
    record = services.backup_store.get(bin_id)
    if record is None:
        raise NotFound(bin_id, f"No backup coordinates found for bin {bin_id}")
    return BackupResponse(bin_id=bin_id, coordinates=_coordinates(record.coordinate, record))


@router.get("/display/{bin_id}", response_model=DisplayResponse)
def get_display_coordinates(bin_id: str, services: Services = Depends(get_services)):
    """Return live GPS when usable, otherwise the backup."""
    display = services.engine.display_coordinate(bin_id)
    if display is None:
        raise NotFound(bin_id, f"No coordinates found for bin {bin_id}")
    return DisplayResponse(bin_id=bin_id, coordinates=_coordinates(display.coordinate), source=display.source)


@router.get("/bins/status", response_model=BinsStatusResponse)
def get_all_bins_status(services: Services = Depends(get_services)):
    """Live/backup status for every known bin."""
    statuses = services.reporter.fleet_status()
    return BinsStatusResponse(bins=[s.to_dict() for s in statuses])


@router.post("/backup/{bin_id}", response_model=ManualBackupResponse)
def trigger_backup(bin_id: str, req: ManualBackupRequest, services: Services = Depends(get_services)):
    """Manually write a validated backup for one bin."""
    if req.latitude is None or req.longitude is None:
        raise InvalidCoordinate(req.latitude, req.longitude, "Latitude and longitude are required")
    result, coordinate = save_backup(
        services,
        bin_id,
        _as_number(req.latitude),
        _as_number(req.longitude),
        timestamp=req.timestamp,
        source=MANUAL_SOURCE,
    )
    committed = result is UpsertResult.COMMITTED
    message = (
        f"Backup saved for bin {bin_id}"
        if committed
        else f"Backup for bin {bin_id} not updated; stored backup is as new or newer"
    )
    return ManualBackupResponse(message=message, committed=committed, coordinates=_coordinates(coordinate))


@router.post("/force-backup", response_model=SweepResponse)
def force_backup(wait: bool = False, services: Services = Depends(get_services)):
    """Run a sweep now. With wait=false a running sweep yields 409 instead of queueing."""
    report = services.scheduler.run_sweep(SweepTrigger.MANUAL, wait_for_running=wait)
    message = "Force backup completed with failures" if report.partial_failure else "Force backup completed"
    return SweepResponse(message=message, report=report.to_dict())


@router.get("/dynamic-status/{bin_id}", response_model=BinStatusResponse)
def get_dynamic_bin_status(bin_id: str, services: Services = Depends(get_services)):
    """Status for one bin."""
    bin_status = services.reporter.bin_status(bin_id)
    return BinStatusResponse(bin_id=bin_id, status=bin_status.to_dict())


@router.get("/dynamic-status", response_model=BinsStatusResponse)
def get_all_bins_dynamic_status(services: Services = Depends(get_services)):
    """Status for every bin, plus counts per display source."""
    statuses = services.reporter.fleet_status()
    return BinsStatusResponse(
        bins=[s.to_dict() for s in statuses],
        summary=services.reporter.fleet_summary(statuses),
    )


# Mobile app endpoints; declared before /{bin_id} so they are not shadowed.

@router.post("/save", response_model=SaveResponse)
def save_gps_backup(req: SaveRequest, services: Services = Depends(get_services)):
    """Mobile app backup write, tagged with the client's source."""
    if not req.bin_id or req.latitude is None or req.longitude is None:
        raise InvalidCoordinate(
            req.latitude, req.longitude, "Missing required fields: binId, latitude, longitude"
        )
    source = req.source or MOBILE_DEFAULT_SOURCE
    result, coordinate = save_backup(
        services,
        str(req.bin_id),
        _as_number(req.latitude),
        _as_number(req.longitude),
        timestamp=_as_number(req.timestamp),
        source=source,
    )
    committed = result is UpsertResult.COMMITTED
    message = "GPS backup saved successfully" if committed else "GPS backup ignored; stored backup is as new or newer"
    data = _coordinates(coordinate)
    data.source = source
    return SaveResponse(message=message, committed=committed, data=data)


@router.get("/all", response_model=AllBackupsResponse)
def get_all_gps_backups(services: Services = Depends(get_services)):
    """Every stored backup keyed by bin id."""
    backups = services.backup_store.list_backups()
    return AllBackupsResponse(
        data={bin_id: _coordinates(record.coordinate, record) for bin_id, record in backups.items()}
    )


@router.get("/{bin_id}", response_model=MobileBackupResponse)
def get_gps_backup(bin_id: str, services: Services = Depends(get_services)):
    """Mobile alias for the stored backup of one bin."""
    record = services.backup_store.get(bin_id)
    if record is None:
        raise NotFound(bin_id, "No GPS backup found for this bin")
    return MobileBackupResponse(data=_coordinates(record.coordinate, record))
