from __future__ import annotations

import sys
import unittest
from pathlib import Path

SRC_PATH = Path(__file__).resolve().parents[1] / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from container_runner.config import DEFAULT_SOCKET_PATH, as_bool, load_settings


class RunnerSettingsTests(unittest.TestCase):
    def test_defaults_without_environment(self) -> None:
        settings = load_settings(environ={})
        self.assertEqual(DEFAULT_SOCKET_PATH, settings.socket_path)
        self.assertEqual("missing", settings.pull_policy)
        self.assertEqual(60, settings.request_timeout_seconds)
        self.assertEqual(0, settings.wait_timeout_seconds)
        self.assertIsNone(settings.temp_root)

    def test_environment_values_are_read_and_clamped(self) -> None:
        settings = load_settings(
            environ={
                "CONTAINER_RUNNER_SOCKET_PATH": "/tmp/docker.sock",
                "CONTAINER_RUNNER_PULL_POLICY": "ALWAYS",
                "CONTAINER_RUNNER_REQUEST_TIMEOUT_SECONDS": "999999",
                "CONTAINER_RUNNER_WAIT_TIMEOUT_SECONDS": "-5",
                "CONTAINER_RUNNER_LOG_LEVEL": "debug",
            }
        )
        self.assertEqual("/tmp/docker.sock", settings.socket_path)
        self.assertEqual("always", settings.pull_policy)
        self.assertEqual(3600, settings.request_timeout_seconds)
        self.assertEqual(0, settings.wait_timeout_seconds)
        self.assertEqual("DEBUG", settings.log_level)

    def test_overrides_win_and_bad_values_fall_back(self) -> None:
        settings = load_settings(
            {"wait_timeout_seconds": 30, "pull_policy": "sometimes"},
            environ={"CONTAINER_RUNNER_WAIT_TIMEOUT_SECONDS": "5", "CONTAINER_RUNNER_CPU_QUOTA_FLOOR": "abc"},
        )
        self.assertEqual(30, settings.wait_timeout_seconds)
        self.assertEqual("missing", settings.pull_policy)
        self.assertEqual(50_000, settings.cpu_quota_floor)

    def test_ceiling_never_below_floor(self) -> None:
        settings = load_settings(
            environ={
                "CONTAINER_RUNNER_MEMORY_FLOOR_BYTES": str(512 * 1024 * 1024),
                "CONTAINER_RUNNER_MEMORY_CEILING_BYTES": "1",
            }
        )
        self.assertEqual(settings.memory_floor_bytes, settings.memory_ceiling_bytes)

    def test_as_bool_accepts_flags_and_falls_back(self) -> None:
        self.assertTrue(as_bool("Yes", default=False))
        self.assertTrue(as_bool(1, default=False))
        self.assertFalse(as_bool(" off ", default=True))
        self.assertFalse(as_bool(0, default=True))
        self.assertTrue(as_bool(None, default=True))
        self.assertFalse(as_bool("maybe", default=False))


if __name__ == "__main__":
    unittest.main()
