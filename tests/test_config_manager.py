import errno
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import yaml

from crewsync.config_manager import MASK, ConfigManager
from crewsync.errors import ConfigError
from crewsync.models import AppConfig


class ConfigManagerTests(unittest.TestCase):
    def test_creates_default_config_on_first_use(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "nested" / "config.yaml"
            manager = ConfigManager(str(config_path))
            self.assertTrue(config_path.exists())
            config = manager.load()
            self.assertEqual(config.sync.timezone, "Asia/Taipei")
            self.assertEqual(config.jobs.max_age_minutes, 30)

    def test_save_fallback_when_replace_ebusy(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.yaml"
            manager = ConfigManager(str(config_path))
            config = AppConfig.from_dict(
                {
                    "google": {"client_id": "cid", "client_secret": "secret"},
                    "sync": {"namespace": "roster"},
                }
            )

            original_replace = Path.replace

            def replace_side_effect(self: Path, target: Path) -> Path:
                if str(self).endswith(".tmp"):
                    raise OSError(errno.EBUSY, "Device or resource busy")
                return original_replace(self, target)

            with mock.patch("pathlib.Path.replace", new=replace_side_effect):
                manager.save(config)

            self.assertTrue(config_path.exists())
            self.assertFalse(config_path.with_suffix(".yaml.tmp").exists())
            data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
            self.assertEqual(data["google"]["client_id"], "cid")
            self.assertEqual(data["sync"]["namespace"], "roster")

    def test_update_merges_nested_sections(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = ConfigManager(str(Path(temp_dir) / "config.yaml"))
            manager.update({"google": {"client_id": "cid", "client_secret": "secret"}})
            config = manager.update({"google": {"timeout_seconds": 10}, "jobs": {"backend": "SQLite"}})
            self.assertEqual(config.google.client_id, "cid")
            self.assertEqual(config.google.timeout_seconds, 10)
            self.assertEqual(config.jobs.backend, "sqlite")
            self.assertEqual(manager.load().google.client_secret, "secret")

    def test_masked_hides_client_secret(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = ConfigManager(str(Path(temp_dir) / "config.yaml"))
            self.assertEqual(manager.masked()["google"]["client_secret"], "")
            self.assertFalse(manager.masked_meta()["google"]["client_secret"]["is_masked"])
            manager.update({"google": {"client_secret": "secret"}})
            self.assertEqual(manager.masked()["google"]["client_secret"], MASK)
            self.assertTrue(manager.masked_meta()["google"]["client_secret"]["is_masked"])
            self.assertEqual(manager.load().google.client_secret, "secret")

    def test_empty_or_masked_secret_keeps_stored_value(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = ConfigManager(str(Path(temp_dir) / "config.yaml"))
            manager.update({"google": {"client_secret": "secret"}})
            for placeholder in ("", MASK, "  "):
                with self.subTest(placeholder=placeholder):
                    config = manager.update({"google": {"client_secret": placeholder}})
                    self.assertEqual(config.google.client_secret, "secret")

    def test_masked_secret_without_stored_value_is_not_saved(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = ConfigManager(str(Path(temp_dir) / "config.yaml"))
            config = manager.update({"google": {"client_secret": MASK}})
            self.assertEqual(config.google.client_secret, "")

    def test_update_rejects_invalid_sync_settings(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = ConfigManager(str(Path(temp_dir) / "config.yaml"))
            bad_payloads = [
                {"sync": {"timezone": "Mars/Olympus_Mons"}},
                {"sync": {"flight_pattern": "^JX(\\d{3}"}},
                {"google": {"credentials_path": str(Path(temp_dir) / "missing.json")}},
            ]
            for payload in bad_payloads:
                with self.subTest(payload=payload):
                    with self.assertRaises(ConfigError):
                        manager.update(payload)
            config = manager.load()
            self.assertEqual(config.sync.timezone, "Asia/Taipei")
            self.assertEqual(config.sync.flight_pattern, r"^JX\d{3}")
            self.assertEqual(config.google.credentials_path, "")


if __name__ == "__main__":
    unittest.main()
