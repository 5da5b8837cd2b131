from __future__ import annotations

import copy
import errno
import os
import re
import threading
from pathlib import Path
from typing import Any

import yaml

from crewsync.errors import ConfigError
from crewsync.models import AppConfig, default_app_config
from crewsync.normalizer import civil_zone

MASK = "***"
# (section, key) pairs never returned in clear text by the HTTP layer.
SECRET_FIELDS = (("google", "client_secret"),)


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _drop_placeholder_secrets(payload: dict[str, Any], current: AppConfig) -> dict[str, Any]:
    """Remove empty or masked secrets from an update so they keep their stored value."""
    cleaned = copy.deepcopy(payload)
    current_dict = current.to_dict()
    for section, key in SECRET_FIELDS:
        block = cleaned.get(section)
        if not isinstance(block, dict) or key not in block:
            continue
        if str(block[key] or "").strip() not in {"", MASK}:
            continue
        if current_dict.get(section, {}).get(key):
            del block[key]
        else:
            block[key] = ""
        if not block:
            del cleaned[section]
    return cleaned


def validate_config(config: AppConfig) -> None:
    try:
        civil_zone(config.sync.timezone)
    except ValueError as exc:
        raise ConfigError(f"sync.timezone: {exc}") from exc
    try:
        re.compile(config.sync.flight_pattern)
    except re.error as exc:
        raise ConfigError(f"sync.flight_pattern is not a valid regular expression: {exc}") from exc
    if config.google.credentials_path and not Path(config.google.credentials_path).is_file():
        raise ConfigError(f"google.credentials_path does not exist: {config.google.credentials_path}")


def _write_text(path: Path, text: str) -> None:
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    try:
        tmp_path.replace(path)
    except OSError as exc:
        # Bind-mounted single files in containers cannot be atomically replaced.
        if exc.errno != errno.EBUSY:
            raise
        path.write_text(text, encoding="utf-8")
        tmp_path.unlink(missing_ok=True)


class ConfigManager:
    def __init__(self, config_path: str | os.PathLike[str]) -> None:
        self.config_path = Path(config_path)
        self._lock = threading.RLock()
        if not self.config_path.exists():
            self.save(default_app_config())

    def load(self) -> AppConfig:
        with self._lock:
            data = yaml.safe_load(self.config_path.read_text(encoding="utf-8"))
        return AppConfig.from_dict(data if isinstance(data, dict) else {})

    def save(self, config: AppConfig) -> None:
        text = yaml.safe_dump(config.to_dict(), sort_keys=False, allow_unicode=True, default_flow_style=False)
        with self._lock:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            _write_text(self.config_path, text)

    def update(self, payload: dict[str, Any]) -> AppConfig:
        """Merge ``payload`` into the stored config and persist it.

        Empty or masked secrets are ignored. The merged config is checked
        before it is written, so a bad timezone or flight pattern is rejected
        here instead of failing inside a later sync job.
        """
        with self._lock:
            current = self.load()
            merged = _deep_merge(current.to_dict(), _drop_placeholder_secrets(payload, current))
            config = AppConfig.from_dict(merged)
            validate_config(config)
            self.save(config)
            return config

    def masked(self) -> dict[str, Any]:
        config = self.load().to_dict()
        for section, key in SECRET_FIELDS:
            if config.get(section, {}).get(key):
                config[section][key] = MASK
        return config

    def masked_meta(self) -> dict[str, Any]:
        config = self.load().to_dict()
        meta: dict[str, Any] = {}
        for section, key in SECRET_FIELDS:
            is_set = bool(str(config.get(section, {}).get(key, "") or "").strip())
            meta.setdefault(section, {})[key] = {"is_masked": is_set}
        return meta
