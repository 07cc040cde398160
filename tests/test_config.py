import os
import unittest

from pydantic import ValidationError

from bin_locator.config import Settings


class _EnvPatch:
    """Set BINLOC_* variables for the duration of a test."""

    def __init__(self, **values):
        self.values = {f"BINLOC_{k.upper()}": v for k, v in values.items()}
        self.previous = {}

    def __enter__(self):
        for key, value in self.values.items():
            self.previous[key] = os.environ.get(key)
            os.environ[key] = value
        return self

    def __exit__(self, *exc):
        for key, value in self.previous.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value


class TestConfig(unittest.TestCase):
    def test_settings_defaults(self):
        s = Settings()
        self.assertEqual(s.backup_interval_seconds, 3600.0)
        self.assertIsNone(s.freshness_window_seconds)
        self.assertEqual(s.backup_key_prefix, "gps_backup:")
        self.assertEqual(s.monitoring_table, "monitoring")
        self.assertTrue(s.scheduler_enabled)

    def test_settings_env_override(self):
        with _EnvPatch(
            backup_store="Redis",
            backup_redis_url="redis://cache:6379/1",
            backup_interval_seconds="60",
            freshness_window_seconds="7200",
            scheduler_enabled="false",
        ):
            s = Settings()
        self.assertEqual(s.backup_store, "redis")
        self.assertEqual(s.backup_redis_url, "redis://cache:6379/1")
        self.assertEqual(s.backup_interval_seconds, 60.0)
        self.assertEqual(s.freshness_window_seconds, 7200.0)
        self.assertFalse(s.scheduler_enabled)

    def test_rejects_non_positive_values(self):
        for field in ("backup_interval_seconds", "sweep_timeout_seconds", "sweep_max_workers"):
            with self.subTest(field=field):
                with self.assertRaises(ValidationError):
                    Settings(**{field: 0})

    def test_rejects_non_positive_window(self):
        with self.assertRaises(ValidationError):
            Settings(freshness_window_seconds=-1)


if __name__ == "__main__":
    unittest.main()
