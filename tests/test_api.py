import unittest
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from bin_locator.app_types import Coordinate
from bin_locator.errors import StorageUnavailable
from bin_locator.live_sources import InMemoryLiveSource
from bin_locator.main import API_PREFIX, app as fastapi_app
from bin_locator.service import use_in_memory_backends_for_tests

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
NOW = T0 + timedelta(seconds=300)


def _at(seconds: int, lat: float, lon: float) -> Coordinate:
    return Coordinate(lat, lon, T0 + timedelta(seconds=seconds))


def _unavailable(*_args, **_kwargs):
    raise StorageUnavailable("connection refused")


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        from bin_locator.config import settings

        self._orig_api_key = settings.api_key
        settings.api_key = None
        self.live = InMemoryLiveSource()
        self.services = use_in_memory_backends_for_tests(self.live, clock=lambda: NOW)
        self.store = self.services.backup_store
        self.client = TestClient(fastapi_app)

    def tearDown(self):
        from bin_locator.config import settings

        settings.api_key = self._orig_api_key

    def url(self, path: str) -> str:
        return f"{API_PREFIX}{path}"


class TestDisplay(ApiTestCase):
    def test_live_coordinates_win(self):
        self.live.set_reading("bin-1", _at(250, 10.5, 20.25))
        self.store.upsert("bin-1", _at(100, 5, 5))

        resp = self.client.get(self.url("/display/bin-1"))
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["binId"], "bin-1")
        self.assertEqual(body["source"], "live")
        self.assertEqual(body["coordinates"]["latitude"], 10.5)
        self.assertEqual(body["coordinates"]["longitude"], 20.25)

    def test_falls_back_to_backup(self):
        self.live.set_reading("bin-1", _at(250, 0, 0))
        self.store.upsert("bin-1", _at(100, 5, 5))

        body = self.client.get(self.url("/display/bin-1")).json()
        self.assertEqual(body["source"], "backup")
        self.assertEqual(body["coordinates"]["latitude"], 5)

    def test_nothing_usable_is_404(self):
        self.live.set_reading("bin-1", _at(250, 0, 0))
        resp = self.client.get(self.url("/display/bin-1"))
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {"success": False, "error": "No coordinates found for bin bin-1"})

    def test_storage_failure_is_503(self):
        self.store.get = _unavailable
        resp = self.client.get(self.url("/display/bin-1"))
        self.assertEqual(resp.status_code, 503)
        self.assertFalse(resp.json()["success"])
        self.assertIn("connection refused", resp.json()["error"])


class TestBackupEndpoints(ApiTestCase):
    def test_get_backup_not_found(self):
        resp = self.client.get(self.url("/backup/bin-1"))
        self.assertEqual(resp.status_code, 404)
        self.assertFalse(resp.json()["success"])

    def test_manual_backup_then_read(self):
        resp = self.client.post(
            self.url("/backup/bin-1"),
            json={"latitude": "12.5", "longitude": -45.25, "timestamp": "2024-01-01T00:01:00Z"},
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["committed"])
        self.assertEqual(body["coordinates"]["latitude"], 12.5)

        body = self.client.get(self.url("/backup/bin-1")).json()
        self.assertEqual(body["binId"], "bin-1")
        self.assertEqual(body["coordinates"]["longitude"], -45.25)
        self.assertEqual(body["coordinates"]["source"], "manual")
        self.assertIsNotNone(body["coordinates"]["savedAt"])

    def test_manual_backup_without_timestamp_uses_now(self):
        self.client.post(self.url("/backup/bin-1"), json={"latitude": 1, "longitude": 2})
        self.assertEqual(self.store.get("bin-1").coordinate.timestamp, NOW)

    def test_older_manual_backup_is_not_committed(self):
        self.store.upsert("bin-1", _at(200, 5, 5))
        resp = self.client.post(
            self.url("/backup/bin-1"),
            json={"latitude": 1, "longitude": 2, "timestamp": T0.isoformat()},
        )
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()["committed"])
        self.assertEqual(self.store.get("bin-1").coordinate, _at(200, 5, 5))

    def test_invalid_coordinates_are_400(self):
        for payload in (
            {"latitude": 0, "longitude": 0},
            {"latitude": 91, "longitude": 0},
            {"latitude": "abc", "longitude": 1},
            {"latitude": 1},
            {"latitude": 1, "longitude": 2, "timestamp": "not-a-time"},
            {"latitude": 10**400, "longitude": 10},
            {"latitude": 1, "longitude": 2, "timestamp": -(10**400)},
        ):
            with self.subTest(payload=payload):
                resp = self.client.post(self.url("/backup/bin-1"), json=payload)
                self.assertEqual(resp.status_code, 400)
                self.assertFalse(resp.json()["success"])
        self.assertIsNone(self.store.get("bin-1"))


class TestForceBackup(ApiTestCase):
    def test_force_backup_runs_sweep(self):
        self.live.set_reading("A", _at(250, 10, 20))
        self.live.set_reading("B", _at(250, 0, 0))

        resp = self.client.post(self.url("/force-backup"))
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["message"], "Force backup completed")
        self.assertEqual(body["report"]["trigger"], "manual")
        self.assertEqual(body["report"]["counts"]["backed-up"], 1)
        self.assertEqual(body["report"]["counts"]["skipped-invalid-live"], 1)
        self.assertIsNotNone(self.store.get("A"))

    def test_running_sweep_is_409(self):
        lock = self.services.scheduler._sweep_lock
        lock.acquire()
        try:
            resp = self.client.post(self.url("/force-backup"))
        finally:
            lock.release()
        self.assertEqual(resp.status_code, 409)
        self.assertFalse(resp.json()["success"])

    def test_partial_failure_is_still_200(self):
        self.live.set_reading("A", _at(250, 10, 20))
        self.store.upsert = _unavailable
        body = self.client.post(self.url("/force-backup")).json()
        self.assertEqual(body["message"], "Force backup completed with failures")
        self.assertTrue(body["report"]["partialFailure"])
        self.assertEqual(body["report"]["results"][0]["outcome"], "failed")


class TestStatusEndpoints(ApiTestCase):
    def test_status(self):
        self.client.post(self.url("/force-backup"))
        body = self.client.get(self.url("/status")).json()
        status = body["status"]
        self.assertFalse(status["isRunning"])
        self.assertEqual(status["sweepCount"], 1)
        self.assertEqual(status["lastSweep"]["trigger"], "manual")
        self.assertTrue(status["storage"]["ok"])

    def test_bins_status(self):
        self.live.set_reading("A", _at(250, 10, 20))
        self.live.set_reading("B", None)
        self.store.upsert("B", _at(100, 5, 5))

        body = self.client.get(self.url("/bins/status")).json()
        self.assertEqual([b["binId"] for b in body["bins"]], ["A", "B"])
        self.assertEqual(body["bins"][1]["displaySource"], "backup")
        self.assertIsNone(body["summary"])

    def test_dynamic_status(self):
        self.live.set_reading("A", _at(250, 10, 20))
        self.live.set_reading("B", _at(250, 0, 0))

        body = self.client.get(self.url("/dynamic-status")).json()
        self.assertEqual(body["summary"], {"live": 1, "backup": 0, "none": 1, "total": 2})

        body = self.client.get(self.url("/dynamic-status/A")).json()
        self.assertEqual(body["binId"], "A")
        self.assertTrue(body["status"]["liveGPS"]["valid"])
        self.assertFalse(body["status"]["backupGPS"]["valid"])

    def test_dynamic_status_unknown_bin_is_404(self):
        resp = self.client.get(self.url("/dynamic-status/ghost"))
        self.assertEqual(resp.status_code, 404)


class TestMobileEndpoints(ApiTestCase):
    def test_save_and_read_back(self):
        resp = self.client.post(
            self.url("/save"),
            json={"binId": "bin-9", "latitude": 14.6, "longitude": 121.0, "timestamp": 1_704_067_260_000},
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["committed"])
        self.assertEqual(body["data"]["source"], "gps_live")
        self.assertEqual(self.store.get("bin-9").coordinate.timestamp, T0 + timedelta(seconds=60))

        body = self.client.get(self.url("/bin-9")).json()
        self.assertEqual(body["data"]["latitude"], 14.6)
        self.assertEqual(body["data"]["source"], "gps_live")

    def test_save_with_custom_source(self):
        self.client.post(self.url("/save"), json={"binId": "bin-9", "latitude": 1, "longitude": 2, "source": "driver"})
        self.assertEqual(self.store.get("bin-9").source, "driver")

    def test_save_accepts_numeric_bin_id(self):
        resp = self.client.post(self.url("/save"), json={"binId": 7, "latitude": 1, "longitude": 2})
        self.assertEqual(resp.status_code, 200)
        self.assertIsNotNone(self.store.get("7"))

    def test_save_out_of_range_timestamp_is_400(self):
        resp = self.client.post(
            self.url("/save"),
            json={"binId": "bin-9", "latitude": 10, "longitude": 20, "timestamp": 10**400},
        )
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.json()["success"])
        self.assertIsNone(self.store.get("bin-9"))

    def test_save_missing_fields_is_400(self):
        resp = self.client.post(self.url("/save"), json={"latitude": 1, "longitude": 2})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("binId", resp.json()["error"])

    def test_save_stale_is_not_committed(self):
        self.store.upsert("bin-9", _at(200, 5, 5))
        body = self.client.post(
            self.url("/save"),
            json={"binId": "bin-9", "latitude": 1, "longitude": 2, "timestamp": T0.isoformat()},
        ).json()
        self.assertFalse(body["committed"])

    def test_all(self):
        self.store.upsert("a", _at(1, 1, 1))
        self.store.upsert("b", _at(2, 2, 2))
        body = self.client.get(self.url("/all")).json()
        self.assertEqual(sorted(body["data"]), ["a", "b"])
        self.assertEqual(body["data"]["b"]["latitude"], 2)

    def test_get_missing_backup_is_404(self):
        resp = self.client.get(self.url("/bin-404"))
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["error"], "No GPS backup found for this bin")


class TestApiKey(ApiTestCase):
    def test_requires_key_when_configured(self):
        from bin_locator.config import settings

        settings.api_key = "s3cret"
        self.assertEqual(self.client.get(self.url("/status")).status_code, 401)
        self.assertEqual(
            self.client.get(self.url("/status"), headers={"X-API-Key": "wrong"}).status_code, 401
        )
        self.assertEqual(
            self.client.get(self.url("/status"), headers={"X-API-Key": "s3cret"}).status_code, 200
        )

    def test_health_is_open(self):
        from bin_locator.config import settings

        settings.api_key = "s3cret"
        self.assertEqual(self.client.get("/health").status_code, 200)


if __name__ == "__main__":
    unittest.main()
