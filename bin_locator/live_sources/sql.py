"""SQL live source over the `monitoring` table written by the ingestion path.

Expected columns: `bin_id`, `latitude`, `longitude`, `timestamp`. The
timestamp may be a native datetime or an epoch number (seconds or
milliseconds), since devices and the mobile app report both. Normally there is
one row per bin; if the table keeps history, the newest row is the live reading.
"""

from __future__ import annotations

from typing import List, Mapping, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from bin_locator.app_types import Coordinate, coerce_timestamp
from bin_locator.backup_store.sql import checked_identifier
from bin_locator.errors import StorageUnavailable
from bin_locator.live_sources.base import LiveReadingSource
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="live_sources/sql_live_source")


class SqlLiveSource(LiveReadingSource):
    """Read live readings and the fleet list from a relational table."""

    def __init__(self, engine: Engine, *, table: str = "monitoring") -> None:
        self.engine = engine
        self.table = checked_identifier(table)

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "SqlLiveSource":
        """Create an engine from a URL and build the source."""
        logger.info("Connecting live source", extra={"db_url": mask_url(database_url)})
        engine = create_engine(database_url, future=True)
        return cls(engine, **kwargs)

    @staticmethod
    def _as_float(value) -> Optional[float]:
        """Coerce numeric-looking values; anything else becomes None (invalid, not an error)."""
        if value is None or isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError, OverflowError):
            return None

    @classmethod
    def _row_to_coordinate(cls, row: Mapping) -> Optional[Coordinate]:
        try:
            timestamp = coerce_timestamp(row["timestamp"])
        except (TypeError, ValueError):
            timestamp = None
        if timestamp is None:
            logger.debug("Ignoring live reading without a usable timestamp", extra={"bin_id": row["bin_id"]})
            return None
        return Coordinate(
            latitude=cls._as_float(row["latitude"]),
            longitude=cls._as_float(row["longitude"]),
            timestamp=timestamp,
        )

    def get_live_reading(self, bin_id: str) -> Optional[Coordinate]:
        query = text(
            f"""
            SELECT bin_id, latitude, longitude, timestamp
              FROM {self.table}
             WHERE bin_id = :bin_id
             ORDER BY timestamp DESC
            """
        )
        try:
            with self.engine.connect() as conn:
                row = conn.execute(query, {"bin_id": bin_id}).mappings().first()
        except SQLAlchemyError as exc:
            logger.error("Failed to read live reading: %s", exc, extra={"bin_id": bin_id})
            raise StorageUnavailable(f"Live source unavailable for {bin_id}") from exc
        return self._row_to_coordinate(row) if row else None

    def list_bin_ids(self) -> List[str]:
        query = text(f"SELECT DISTINCT bin_id FROM {self.table} ORDER BY bin_id")
        try:
            with self.engine.connect() as conn:
                return [str(r[0]) for r in conn.execute(query)]
        except SQLAlchemyError as exc:
            logger.error("Failed to list bins: %s", exc)
            raise StorageUnavailable("Live source unavailable listing bins") from exc

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Live source ping failed: {exc}") from exc
