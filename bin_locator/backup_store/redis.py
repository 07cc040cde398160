"""Redis-backed backup store with an atomic monotonic upsert."""

from typing import Callable, Dict, Optional

from redis.exceptions import RedisError

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
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="backup_store/redis_backup_store")

# KEYS[1] bin hash, KEYS[2] bin id index set
# ARGV: timestamp_us, latitude, longitude, source, saved_at_us, bin_id
_UPSERT_SCRIPT = """
local stored = redis.call('HGET', KEYS[1], 'timestamp_us')
if stored and tonumber(stored) >= tonumber(ARGV[1]) then
  return 0
end
redis.call('HSET', KEYS[1],
  'timestamp_us', ARGV[1],
  'latitude', ARGV[2],
  'longitude', ARGV[3],
  'source', ARGV[4],
  'saved_at_us', ARGV[5])
redis.call('SADD', KEYS[2], ARGV[6])
return 1
"""


def _text(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class RedisBackupStore(BackupStore):
    """One hash per bin under `prefix`, plus a set indexing known bin ids.

    The compare-and-write runs as a Lua script so concurrent writers for the
    same bin are ordered by timestamp, not by arrival.
    """

    def __init__(self, client, prefix: str = "gps_backup:", clock: Callable = utc_now) -> None:
        logger.debug("Initializing RedisBackupStore")
        self.client = client
        self.prefix = prefix
        self._clock = clock
        self._upsert_script = client.register_script(_UPSERT_SCRIPT)

    def _key(self, bin_id: str) -> str:
        """Return the Redis key for a bin's backup hash."""
        return f"{self.prefix}bin:{bin_id}"

    @property
    def _index_key(self) -> str:
        return f"{self.prefix}bins"

    @staticmethod
    def _decode(raw: dict) -> Optional[BackupRecord]:
        """Build a BackupRecord from a raw hash, or None if it is empty."""
        if not raw:
            return None
        data = {_text(k): _text(v) for k, v in raw.items()}
        coordinate = Coordinate(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            timestamp=from_epoch_micros(data["timestamp_us"]),
        )
        return BackupRecord(
            coordinate=coordinate,
            source=data.get("source", DEFAULT_SOURCE),
            saved_at=from_epoch_micros(data.get("saved_at_us", data["timestamp_us"])),
        )

    def get(self, bin_id: str) -> Optional[BackupRecord]:
        try:
            raw = self.client.hgetall(self._key(bin_id))
        except RedisError as exc:
            logger.error("Failed to read backup from Redis: %s", exc, extra={"bin_id": bin_id})
            raise StorageUnavailable(f"Redis unavailable reading backup for {bin_id}") from exc
        return self._decode(raw)

    def upsert(self, bin_id: str, coordinate: Coordinate, source: str = DEFAULT_SOURCE) -> UpsertResult:
        ensure_valid(coordinate)
        args = [
            to_epoch_micros(coordinate.timestamp),
            repr(float(coordinate.latitude)),
            repr(float(coordinate.longitude)),
            source,
            to_epoch_micros(self._clock()),
            bin_id,
        ]
        try:
            committed = self._upsert_script(keys=[self._key(bin_id), self._index_key], args=args)
        except RedisError as exc:
            logger.error("Failed to write backup to Redis: %s", exc, extra={"bin_id": bin_id})
            raise StorageUnavailable(f"Redis unavailable writing backup for {bin_id}") from exc
        if int(committed) == 1:
            return UpsertResult.COMMITTED
        logger.debug("Rejecting stale backup write", extra={"bin_id": bin_id})
        return UpsertResult.REJECTED_STALE

    def list_backups(self) -> Dict[str, BackupRecord]:
        try:
            bin_ids = sorted(_text(b) for b in self.client.smembers(self._index_key))
            out: Dict[str, BackupRecord] = {}
            for bin_id in bin_ids:
                record = self._decode(self.client.hgetall(self._key(bin_id)))
                if record is not None:
                    out[bin_id] = record
            return out
        except RedisError as exc:
            logger.error("Failed to list backups from Redis: %s", exc)
            raise StorageUnavailable("Redis unavailable listing backups") from exc

    def ping(self) -> None:
        try:
            self.client.ping()
        except RedisError as exc:
            raise StorageUnavailable(f"Redis ping failed: {exc}") from exc

    def clear(self) -> None:
        """Delete every key under the configured prefix."""
        try:
            for key in self.client.scan_iter(f"{self.prefix}*"):
                self.client.delete(key)
        except RedisError as exc:
            logger.error("Failed to clear backups from Redis: %s", exc)
            raise StorageUnavailable("Redis unavailable clearing backups") from exc
