"""SQL-backed backup store (Postgres in production, SQLite in tests).

Rows live in a single table keyed by bin id. Timestamps are stored as integer
microseconds since the epoch so the monotonic comparison is exact on every
dialect.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from bin_locator.app_types import (
    BackupRecord,
    Coordinate,
    UpsertResult,
    from_epoch_micros,
    to_epoch_micros,
    utc_now,
)
from bin_locator.backup_store.base import DEFAULT_SOURCE, BackupStore, ensure_valid
from bin_locator.errors import StorageUnavailable
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="backup_store/sql_backup_store")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def checked_identifier(name: str) -> str:
    """Return `name` if it is a plain (optionally schema-qualified) SQL identifier."""
    if not _IDENTIFIER.match(name or ""):
        raise ValueError(f"Invalid SQL table name: {name!r}")
    return name


class SqlBackupStore(BackupStore):
    """Persist backups in a relational table."""

    def __init__(self, engine: Engine, *, table: str = "gps_backups", clock: Callable = utc_now) -> None:
        logger.debug("Initializing SqlBackupStore", extra={"table": table})
        self.engine = engine
        self.table = checked_identifier(table)
        self._clock = clock

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "SqlBackupStore":
        """Create an engine from a URL and build the store."""
        logger.info("Connecting backup store", extra={"db_url": mask_url(database_url)})
        engine = create_engine(database_url, future=True)
        return cls(engine, **kwargs)

    def create_schema(self) -> None:
        """Create the backup table if it does not exist."""
        ddl = text(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                bin_id VARCHAR(128) PRIMARY KEY,
                latitude DOUBLE PRECISION NOT NULL,
                longitude DOUBLE PRECISION NOT NULL,
                timestamp_us BIGINT NOT NULL,
                source VARCHAR(64) NOT NULL,
                saved_at_us BIGINT NOT NULL
            )
            """
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(ddl)
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Could not create table {self.table}: {exc}") from exc

    @staticmethod
    def _row_to_record(row) -> BackupRecord:
        coordinate = Coordinate(
            latitude=float(row["latitude"]),
            longitude=float(row["longitude"]),
            timestamp=from_epoch_micros(row["timestamp_us"]),
        )
        return BackupRecord(
            coordinate=coordinate,
            source=row["source"],
            saved_at=from_epoch_micros(row["saved_at_us"]),
        )

    def get(self, bin_id: str) -> Optional[BackupRecord]:
        query = text(
            f"""
            SELECT bin_id, latitude, longitude, timestamp_us, source, saved_at_us
              FROM {self.table}
             WHERE bin_id = :bin_id
            """
        )
        try:
            with self.engine.connect() as conn:
                row = conn.execute(query, {"bin_id": bin_id}).mappings().first()
        except SQLAlchemyError as exc:
            logger.error("Failed to read backup: %s", exc, extra={"bin_id": bin_id})
            raise StorageUnavailable(f"Database unavailable reading backup for {bin_id}") from exc
        return self._row_to_record(row) if row else None

    def _upsert_once(self, params: dict) -> UpsertResult:
        """Conditional UPDATE, then guarded INSERT, in one transaction."""
        update = text(
            f"""
            UPDATE {self.table}
               SET latitude = :latitude,
                   longitude = :longitude,
                   timestamp_us = :timestamp_us,
                   source = :source,
                   saved_at_us = :saved_at_us
             WHERE bin_id = :bin_id
               AND timestamp_us < :timestamp_us
            """
        )
        insert = text(
            f"""
            INSERT INTO {self.table} (bin_id, latitude, longitude, timestamp_us, source, saved_at_us)
            SELECT :bin_id, :latitude, :longitude, :timestamp_us, :source, :saved_at_us
             WHERE NOT EXISTS (SELECT 1 FROM {self.table} WHERE bin_id = :bin_id)
            """
        )
        with self.engine.begin() as conn:
            if conn.execute(update, params).rowcount == 1:
                return UpsertResult.COMMITTED
            if conn.execute(insert, params).rowcount == 1:
                return UpsertResult.COMMITTED
        return UpsertResult.REJECTED_STALE

    def upsert(self, bin_id: str, coordinate: Coordinate, source: str = DEFAULT_SOURCE) -> UpsertResult:
        ensure_valid(coordinate)
        params = {
            "bin_id": bin_id,
            "latitude": float(coordinate.latitude),
            "longitude": float(coordinate.longitude),
            "timestamp_us": to_epoch_micros(coordinate.timestamp),
            "source": source,
            "saved_at_us": to_epoch_micros(self._clock()),
        }
        try:
            try:
                result = self._upsert_once(params)
            except IntegrityError:
                # Lost a first-insert race; the row exists now, so the conditional update decides.
                logger.debug("Concurrent first write detected; retrying", extra={"bin_id": bin_id})
                result = self._upsert_once(params)
        except SQLAlchemyError as exc:
            logger.error("Failed to write backup: %s", exc, extra={"bin_id": bin_id})
            raise StorageUnavailable(f"Database unavailable writing backup for {bin_id}") from exc
        if result is UpsertResult.REJECTED_STALE:
            logger.debug("Rejecting stale backup write", extra={"bin_id": bin_id})
        return result

    def list_backups(self) -> Dict[str, BackupRecord]:
        query = text(
            f"""
            SELECT bin_id, latitude, longitude, timestamp_us, source, saved_at_us
              FROM {self.table}
             ORDER BY bin_id
            """
        )
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
        except SQLAlchemyError as exc:
            logger.error("Failed to list backups: %s", exc)
            raise StorageUnavailable("Database unavailable listing backups") from exc
        return {row["bin_id"]: self._row_to_record(row) for row in rows}

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Database ping failed: {exc}") from exc

    def clear(self) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(text(f"DELETE FROM {self.table}"))
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Database unavailable clearing {self.table}") from exc
