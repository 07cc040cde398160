import unittest
from datetime import datetime, timedelta, timezone

from redis.exceptions import ConnectionError as RedisConnectionError

from bin_locator.app_types import Coordinate, UpsertResult
from bin_locator.backup_store.redis import RedisBackupStore
from bin_locator.errors import InvalidCoordinate, StorageUnavailable

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _at(seconds: int, lat: float = 10.0, lon: float = 20.0) -> Coordinate:
    return Coordinate(lat, lon, T0 + timedelta(seconds=seconds))


class FakeRedis:
    """Just enough of redis-py for the backup store; the Lua script is emulated."""

    def __init__(self):
        self.hashes = {}
        self.sets = {}
        self.scripts = []

    def register_script(self, script):
        self.scripts.append(script)

        def run(keys, args):
            key, index_key = keys
            ts_us, lat, lon, source, saved_at_us, bin_id = [str(a) for a in args]
            stored = self.hashes.get(key, {}).get(b"timestamp_us")
            if stored is not None and int(stored) >= int(ts_us):
                return 0
            self.hashes[key] = {
                b"timestamp_us": ts_us.encode(),
                b"latitude": lat.encode(),
                b"longitude": lon.encode(),
                b"source": source.encode(),
                b"saved_at_us": saved_at_us.encode(),
            }
            self.sets.setdefault(index_key, set()).add(bin_id.encode())
            return 1

        return run

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    def ping(self):
        return True

    def scan_iter(self, pattern):
        prefix = pattern.rstrip("*")
        return [k for k in list(self.hashes) + list(self.sets) if k.startswith(prefix)]

    def delete(self, key):
        self.hashes.pop(key, None)
        self.sets.pop(key, None)


class BrokenRedis(FakeRedis):
    def register_script(self, script):
        def run(keys, args):
            raise RedisConnectionError("connection refused")

        return run

    def hgetall(self, key):
        raise RedisConnectionError("connection refused")

    def ping(self):
        raise RedisConnectionError("connection refused")


class TestRedisBackupStore(unittest.TestCase):
    def test_registers_upsert_script(self):
        client = FakeRedis()
        RedisBackupStore(client)
        self.assertEqual(len(client.scripts), 1)
        self.assertIn("HGET", client.scripts[0])

    def test_round_trip_preserves_values_and_metadata(self):
        saved = T0 + timedelta(hours=1)
        client = FakeRedis()
        store = RedisBackupStore(client, prefix="test:", clock=lambda: saved)

        result = store.upsert("bin-7", Coordinate(12.345678, -45.5, T0 + timedelta(microseconds=42)), source="manual")
        self.assertEqual(result, UpsertResult.COMMITTED)
        self.assertIn("test:bin:bin-7", client.hashes)

        record = store.get("bin-7")
        self.assertEqual(record.coordinate.latitude, 12.345678)
        self.assertEqual(record.coordinate.longitude, -45.5)
        self.assertEqual(record.coordinate.timestamp, T0 + timedelta(microseconds=42))
        self.assertEqual(record.source, "manual")
        self.assertEqual(record.saved_at, saved)

    def test_monotonic_rule(self):
        store = RedisBackupStore(FakeRedis())
        store.upsert("bin-1", _at(100))
        self.assertEqual(store.upsert("bin-1", _at(50)), UpsertResult.REJECTED_STALE)
        self.assertEqual(store.upsert("bin-1", _at(100)), UpsertResult.REJECTED_STALE)
        self.assertEqual(store.get("bin-1").coordinate.timestamp, T0 + timedelta(seconds=100))
        self.assertEqual(store.upsert("bin-1", _at(150)), UpsertResult.COMMITTED)
        self.assertEqual(store.get("bin-1").coordinate.timestamp, T0 + timedelta(seconds=150))

    def test_get_missing_returns_none(self):
        store = RedisBackupStore(FakeRedis())
        self.assertIsNone(store.get("nope"))

    def test_invalid_coordinate_never_reaches_redis(self):
        client = FakeRedis()
        store = RedisBackupStore(client)
        with self.assertRaises(InvalidCoordinate):
            store.upsert("bin-1", Coordinate(95, 10, T0))
        self.assertEqual(client.hashes, {})

    def test_list_backups_and_clear(self):
        client = FakeRedis()
        store = RedisBackupStore(client, prefix="gb:")
        client.hashes["other:key"] = {}
        store.upsert("b", _at(2))
        store.upsert("a", _at(1))
        self.assertEqual(list(store.list_backups()), ["a", "b"])

        store.clear()
        self.assertEqual(store.list_backups(), {})
        self.assertIn("other:key", client.hashes)

    def test_redis_errors_become_storage_unavailable(self):
        store = RedisBackupStore(BrokenRedis())
        with self.assertRaises(StorageUnavailable):
            store.get("bin-1")
        with self.assertRaises(StorageUnavailable):
            store.upsert("bin-1", _at(1))
        with self.assertRaises(StorageUnavailable):
            store.ping()


if __name__ == "__main__":
    unittest.main()
