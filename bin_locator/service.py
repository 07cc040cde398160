"""Process-wide wiring of live source, backup store, engine, scheduler and reporter."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Optional, Tuple

import redis

from bin_locator import config
from bin_locator.app_types import Coordinate, UpsertResult, coerce_timestamp, utc_now
from bin_locator.arbitration import ArbitrationEngine
from bin_locator.backup_store import BackupStore, InMemoryBackupStore, RedisBackupStore, SqlBackupStore
from bin_locator.errors import InvalidCoordinate
from bin_locator.live_sources import InMemoryLiveSource, LiveReadingSource, build_live_source
from bin_locator.scheduler import BackupScheduler
from bin_locator.status import StatusReporter
from bin_locator.validation import is_valid
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="service")

MANUAL_SOURCE = "manual"
MOBILE_DEFAULT_SOURCE = "gps_live"


@dataclass
class Services:
    """Everything a request handler or the scheduler thread needs."""
    live_source: LiveReadingSource
    backup_store: BackupStore
    engine: ArbitrationEngine
    scheduler: BackupScheduler
    reporter: StatusReporter
    backup_backend: str = "memory"
    live_backend: str = "memory"

    def startup(self, start_scheduler: bool = True) -> None:
        """Prepare storage and start the background sweep loop."""
        if isinstance(self.backup_store, SqlBackupStore):
            self.backup_store.create_schema()
        if start_scheduler:
            self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.stop(timeout=5)


def build_backup_store(settings: config.Settings, clock: Callable = utc_now) -> BackupStore:
    """Instantiate the configured backup store."""
    kind = settings.backup_store
    if kind == "memory":
        logger.info("Using InMemoryBackupStore")
        return InMemoryBackupStore(clock=clock)
    if kind == "redis":
        if not settings.backup_redis_url:
            raise ValueError("backup_redis_url must be set for the Redis backup store")
        logger.info("Using RedisBackupStore", extra={"redis_url": mask_url(settings.backup_redis_url)})
        client = redis.Redis.from_url(settings.backup_redis_url)
        return RedisBackupStore(client, prefix=settings.backup_key_prefix, clock=clock)
    if kind == "sql":
        if not settings.backup_database_url:
            raise ValueError("backup_database_url must be set for the SQL backup store")
        return SqlBackupStore.from_url(settings.backup_database_url, table=settings.backup_table, clock=clock)
    raise ValueError(f"Unknown backup store '{kind}'")


def build_services(
    settings: Optional[config.Settings] = None,
    *,
    live_source: Optional[LiveReadingSource] = None,
    backup_store: Optional[BackupStore] = None,
    clock: Callable = utc_now,
) -> Services:
    """Build the service graph from settings, with optional injected collaborators."""
    settings = settings or config.settings
    window = (
        timedelta(seconds=settings.freshness_window_seconds)
        if settings.freshness_window_seconds is not None
        else None
    )
    live_source = live_source if live_source is not None else build_live_source(settings)
    backup_store = backup_store if backup_store is not None else build_backup_store(settings, clock)

    engine = ArbitrationEngine(live_source, backup_store, freshness_window=window, clock=clock)
    scheduler = BackupScheduler(
        live_source,
        backup_store,
        interval_seconds=settings.backup_interval_seconds,
        freshness_window=window,
        max_workers=settings.sweep_max_workers,
        timeout_seconds=settings.sweep_timeout_seconds,
        clock=clock,
    )
    return Services(
        live_source=live_source,
        backup_store=backup_store,
        engine=engine,
        scheduler=scheduler,
        reporter=StatusReporter(engine),
        backup_backend=settings.backup_store,
        live_backend=settings.live_source,
    )


_services: Services = build_services()


def get_services() -> Services:
    """Return the process-wide service graph (FastAPI dependency)."""
    return _services


def use_in_memory_backends_for_tests(
    live_source: Optional[InMemoryLiveSource] = None,
    *,
    settings: Optional[config.Settings] = None,
    clock: Callable = utc_now,
) -> Services:
    """Swap in fresh in-memory backends for test isolation and determinism."""
    global _services
    _services.scheduler.stop(timeout=1)
    _services = build_services(
        settings,
        live_source=live_source if live_source is not None else InMemoryLiveSource(),
        backup_store=InMemoryBackupStore(clock=clock),
        clock=clock,
    )
    return _services


def parse_coordinate(latitude: Any, longitude: Any, timestamp: Any = None, *, clock: Callable = utc_now) -> Coordinate:
    """Build a validated Coordinate from client input; raise InvalidCoordinate otherwise."""
    if not is_valid(latitude, longitude):
        raise InvalidCoordinate(latitude, longitude)
    try:
        ts = coerce_timestamp(timestamp) if timestamp is not None else clock()
    except (TypeError, ValueError) as exc:
        raise InvalidCoordinate(latitude, longitude, f"Invalid timestamp: {timestamp!r}") from exc
    return Coordinate(latitude=float(latitude), longitude=float(longitude), timestamp=ts)


def save_backup(
    services: Services,
    bin_id: str,
    latitude: Any,
    longitude: Any,
    *,
    timestamp: Any = None,
    source: str = MANUAL_SOURCE,
) -> Tuple[UpsertResult, Coordinate]:
    """Validated, monotonic write on behalf of an operator or the mobile app."""
    coordinate = parse_coordinate(latitude, longitude, timestamp, clock=services.engine.clock)
    result = services.backup_store.upsert(bin_id, coordinate, source=source)
    if result is UpsertResult.REJECTED_STALE:
        logger.info(f"Ignored {source} backup for bin {bin_id}: stored backup is as new or newer")
    else:
        logger.info(f"Saved {source} backup for bin {bin_id}")
    return result, coordinate
