"""Configuration controller for YAML-based settings."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any

import yaml


CONFIG_DIR_ENV = "NETBIRD_ENROLL_CONFIG_DIR"

_LEGACY_NETBIRD_KEYS = {
    "netbird_exe": "executable",
    "service_name": "service_name",
    "netbird_data_dir": "data_dir",
    "management_url": "management_url",
}
_LEGACY_REGISTRATION_KEYS = {
    "max_retries": "max_retries",
    "auto_recover": "auto_recover",
}


@dataclass(frozen=True)
class ConfigPaths:
    """Filesystem paths for configuration files."""

    config_dir: Path
    config_file: Path
    override_file: Path


def resolve_config_dir() -> Path:
    """Return the directory holding default.yaml.

    The environment override wins, then ./config in the working directory,
    then the directory this module ships in.
    """

    env_dir = os.environ.get(CONFIG_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()
    local_dir = Path("config")
    if (local_dir / "default.yaml").exists():
        return local_dir
    return Path(__file__).resolve().parent


class ConfigController:
    """Singleton controller for loading and updating configuration."""

    _instance: "ConfigController | None" = None

    def __init__(self, config_file: str = "default.yaml") -> None:
        if ConfigController._instance is not None:
            raise RuntimeError("You cannot create another ConfigController class")

        config_dir = resolve_config_dir()
        self.paths = ConfigPaths(
            config_dir=config_dir,
            config_file=config_dir / config_file,
            override_file=config_dir / "override.yaml",
        )
        self.config: dict[str, Any] = {}
        self.load_config()

    @classmethod
    def get_instance(cls) -> "ConfigController":
        """Return the singleton instance of the controller."""

        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def load_config(self) -> None:
        """Load configuration from default and override YAML files."""

        with self.paths.config_file.open("r", encoding="utf-8") as file:
            config = yaml.safe_load(file) or {}

        if self.paths.override_file.exists():
            with self.paths.override_file.open("r", encoding="utf-8") as file:
                override_config = yaml.safe_load(file) or {}
            if override_config:
                config = self._deep_merge(config, override_config)

        self.config = self._normalize_legacy_config(config)

    def save_config(self, config: dict[str, Any]) -> None:
        """Persist configuration to override.yaml, archiving previous overrides."""

        if self.paths.override_file.exists():
            archive_index = 1
            archive_file = self._archive_path(archive_index)
            while archive_file.exists():
                archive_index += 1
                archive_file = self._archive_path(archive_index)
            self.paths.override_file.rename(archive_file)

        with self.paths.override_file.open("w", encoding="utf-8") as file:
            yaml.safe_dump(config, file)

    def get_config(self) -> dict[str, Any]:
        """Return the currently loaded configuration."""

        return dict(self.config)

    def set_config(self, config: dict[str, Any]) -> None:
        """Set and persist configuration values."""

        self.config = dict(config)
        self.save_config(self.config)

    def _archive_path(self, index: int) -> Path:
        """Return the archive path for a given override index."""

        filename = f"override_{index:04d}.yaml"
        return self.paths.config_dir / filename

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge dictionaries, overriding base values with override values."""

        merged = dict(base)
        for key, value in override.items():
            if (
                key in merged
                and isinstance(merged[key], dict)
                and isinstance(value, dict)
            ):
                merged[key] = self._deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _normalize_legacy_config(self, config: dict[str, Any]) -> dict[str, Any]:
        """Fold flat legacy keys into the netbird/registration sections.

        Nested values win over flat ones when both are present.
        """

        normalized = dict(config)
        netbird_cfg = dict(normalized.get("netbird") or {})
        registration_cfg = dict(normalized.get("registration") or {})

        for legacy_key, key in _LEGACY_NETBIRD_KEYS.items():
            if legacy_key in normalized and not netbird_cfg.get(key):
                netbird_cfg[key] = normalized[legacy_key]
        for legacy_key, key in _LEGACY_REGISTRATION_KEYS.items():
            if legacy_key in normalized and key not in registration_cfg:
                registration_cfg[key] = normalized[legacy_key]

        normalized["netbird"] = netbird_cfg
        normalized["registration"] = registration_cfg
        return normalized
