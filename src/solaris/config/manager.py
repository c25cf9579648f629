"""Configuration loading and persistence.

``config.defaults.yaml`` holds the shipped values and ``config.yaml`` holds the
operator's overrides; the two are deep-merged and validated into AppConfig.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from solaris.config.schema import AppConfig
from solaris.errors import ConfigurationError

logger = logging.getLogger(__name__)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``, returning a new dict."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def read_yaml(path: Path) -> dict[str, Any]:
    """Read a YAML mapping; a missing or empty file reads as ``{}``."""
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"{path}: invalid YAML: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")
    return data


class ConfigManager:
    """Owns the defaults/override file pair and the validated AppConfig."""

    def __init__(
        self,
        defaults_path: Path | None = None,
        user_path: Path | None = None,
    ) -> None:
        self._defaults_path = defaults_path or Path("config.defaults.yaml")
        self._user_path = user_path or Path("config.yaml")
        self._config: AppConfig | None = None

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            raise RuntimeError("Config not loaded. Call load() first.")
        return self._config

    def load(self) -> AppConfig:
        """Read both files, merge and validate. Raises ConfigurationError."""
        merged = deep_merge(read_yaml(self._defaults_path), read_yaml(self._user_path))
        self._config = self._validate(merged)
        logger.info(
            "Configuration loaded: %d relays, store=%s",
            len(self._config.relays), self._config.store.backend,
        )
        return self._config

    def save_user_config(self, updates: dict[str, Any]) -> AppConfig:
        """Merge ``updates`` into the override file and reload.

        The result is validated before anything is written, so a rejected
        update leaves the file untouched.
        """
        overrides = deep_merge(read_yaml(self._user_path), updates)
        self._validate(deep_merge(read_yaml(self._defaults_path), overrides))
        with open(self._user_path, "w") as f:
            yaml.safe_dump(overrides, f, default_flow_style=False, sort_keys=False)
        logger.info("Saved config overrides to %s: %s", self._user_path, sorted(updates))
        return self.load()

    def _validate(self, data: dict[str, Any]) -> AppConfig:
        try:
            return AppConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"invalid configuration: {e}") from e
