from __future__ import annotations

import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

import config
from trading.models import RebalanceSettings


class ConfigEnvLoadingTests(unittest.TestCase):
    def _run_import(self, env_file: str, snippet: str = "import config; print('ok')") -> subprocess.CompletedProcess[str]:
        root = Path(__file__).resolve().parents[1]
        env = os.environ.copy()
        env["REBALANCER_ENV_FILE"] = env_file
        return subprocess.run(
            [sys.executable, "-c", snippet],
            cwd=str(root),
            env=env,
            capture_output=True,
            text=True,
        )

    def test_missing_env_file_fails_fast(self) -> None:
        result = self._run_import("deploy/__definitely_missing_env_for_test__.env")
        self.assertNotEqual(result.returncode, 0)
        details = (result.stdout + "\n" + result.stderr).lower()
        self.assertIn("rebalancer_env_file", details)
        self.assertIn("does not exist", details)

    def test_existing_env_file_is_applied(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            env_path = Path(tmpdir) / "rebalancer.env"
            env_path.write_text("UNITTEST_REBALANCER_FLAG=loaded\n", encoding="utf-8")
            result = self._run_import(
                str(env_path),
                "import os, config; print(os.getenv('UNITTEST_REBALANCER_FLAG', ''))",
            )
        self.assertEqual(result.returncode, 0, msg=result.stderr)
        self.assertEqual(result.stdout.strip(), "loaded")

    def test_bom_prefixed_env_file_keeps_first_key(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            env_path = Path(tmpdir) / "rebalancer.env"
            env_path.write_bytes("\ufeffRETRY_ATTEMPTS=7\nRETRY_DELAY_MS=250\n".encode("utf-8"))
            result = self._run_import(
                str(env_path),
                "import config; print(f'{config.RETRY_ATTEMPTS}|{config.RETRY_DELAY_MS}')",
            )
        self.assertEqual(result.returncode, 0, msg=result.stderr)
        self.assertEqual(result.stdout.strip(), "7|250")

    def test_invalid_ceiling_bits_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            env_path = Path(tmpdir) / "rebalancer.env"
            env_path.write_text("OVERFLOW_CEILING_BITS=64\n", encoding="utf-8")
            result = self._run_import(str(env_path))
        self.assertNotEqual(result.returncode, 0)
        self.assertIn("OVERFLOW_CEILING_BITS", result.stderr)


class RebalanceSettingsTests(unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self._cfg_old: dict[str, object] = {}

    def patch_cfg(self, **kwargs: object) -> None:
        for key, value in kwargs.items():
            if key not in self._cfg_old:
                self._cfg_old[key] = getattr(config, key, None)
            setattr(config, key, value)

    def tearDown(self) -> None:
        for key, value in self._cfg_old.items():
            setattr(config, key, value)
        super().tearDown()

    def test_snapshot_reads_current_config(self) -> None:
        self.patch_cfg(RETRY_ATTEMPTS=5, RETRY_DELAY_MS=1200, CONFIRMATION_BLOCKS=3, PRICE_PRECISION=4)
        settings = RebalanceSettings.from_config()
        self.assertEqual(settings.retry_attempts, 5)
        self.assertEqual(settings.retry_delay_ms, 1200)
        self.assertEqual(settings.confirmation_blocks, 3)
        self.assertEqual(settings.price_precision, 4)

    def test_snapshot_is_immutable(self) -> None:
        settings = RebalanceSettings.from_config()
        with self.assertRaises(AttributeError):
            settings.retry_attempts = 9  # type: ignore[misc]


if __name__ == "__main__":
    unittest.main()
