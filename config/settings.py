"""Immutable runtime settings for the NetBird enrollment tooling."""

from __future__ import annotations

from dataclasses import dataclass, replace
import os
from pathlib import Path
import sys
from typing import Any, Mapping


DEFAULT_MANAGEMENT_URL = "https://api.netbird.io:443"
DEFAULT_MANAGEMENT_HOST = "api.netbird.io"


def _is_windows() -> bool:
    return sys.platform == "win32"


def _default_executable() -> str:
    if _is_windows():
        program_files = os.environ.get("ProgramFiles", r"C:\Program Files")
        return str(Path(program_files) / "NetBird" / "netbird.exe")
    return "netbird"


def _default_service_name() -> str:
    return "NetBird" if _is_windows() else "netbird"


def _default_data_dir() -> Path:
    if _is_windows():
        program_data = os.environ.get("ProgramData", r"C:\ProgramData")
        return Path(program_data) / "Netbird"
    return Path("/etc/netbird")


def _default_system_drive() -> Path:
    if _is_windows():
        return Path(os.environ.get("SystemDrive", "C:") + "\\")
    return Path("/")


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name) if isinstance(config, Mapping) else None
    return value if isinstance(value, Mapping) else {}


def _path_or_default(value: Any, default: Path) -> Path:
    if isinstance(value, (str, Path)) and str(value):
        return Path(value).expanduser()
    return default


@dataclass(frozen=True)
class NetBirdSettings:
    """Settings shared by every registration component.

    Built once per run and passed explicitly; never mutated.
    """

    executable: str
    service_name: str
    data_dir: Path
    config_file: Path
    management_url: str = DEFAULT_MANAGEMENT_URL
    management_port: int = 443
    system_drive: Path = Path("/")
    command_timeout_s: float = 60.0
    max_retries: int = 3
    auto_recover: bool = True
    readiness_timeout_s: float = 120.0
    readiness_recovery_timeout_s: float = 60.0
    readiness_interval_s: float = 5.0
    verify_timeout_s: float = 60.0
    verify_interval_s: float = 5.0
    min_free_disk_bytes: int = 100 * 1024 * 1024
    lock_file: Path = Path("./var/netbird-enroll.lock")
    var_dir: Path = Path("./var/")
    log_dir: Path = Path("./log/")
    diagnostics_dir: Path = Path("./log/diagnostics/")

    @classmethod
    def defaults(cls) -> "NetBirdSettings":
        """Return settings using only platform defaults."""

        return cls.from_config({})

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "NetBirdSettings":
        """Build settings from a loaded configuration mapping."""

        netbird_cfg = _section(config, "netbird")
        registration_cfg = _section(config, "registration")
        storage_cfg = _section(config, "storage")

        data_dir = _path_or_default(netbird_cfg.get("data_dir"), _default_data_dir())
        config_file = _path_or_default(netbird_cfg.get("config_file"), data_dir / "config.json")
        var_dir = _path_or_default(storage_cfg.get("var_dir"), Path("./var/"))
        log_dir = _path_or_default(storage_cfg.get("log_dir"), Path("./log/"))

        return cls(
            executable=str(netbird_cfg.get("executable") or _default_executable()),
            service_name=str(netbird_cfg.get("service_name") or _default_service_name()),
            data_dir=data_dir,
            config_file=config_file,
            management_url=str(netbird_cfg.get("management_url") or DEFAULT_MANAGEMENT_URL),
            management_port=int(netbird_cfg.get("management_port", 443)),
            system_drive=_path_or_default(
                netbird_cfg.get("system_drive"), _default_system_drive()
            ),
            command_timeout_s=float(netbird_cfg.get("command_timeout_s", 60.0)),
            max_retries=int(registration_cfg.get("max_retries", 3)),
            auto_recover=bool(registration_cfg.get("auto_recover", True)),
            readiness_timeout_s=float(registration_cfg.get("readiness_timeout_s", 120.0)),
            readiness_recovery_timeout_s=float(
                registration_cfg.get("readiness_recovery_timeout_s", 60.0)
            ),
            readiness_interval_s=float(registration_cfg.get("readiness_interval_s", 5.0)),
            verify_timeout_s=float(registration_cfg.get("verify_timeout_s", 60.0)),
            verify_interval_s=float(registration_cfg.get("verify_interval_s", 5.0)),
            min_free_disk_bytes=int(float(registration_cfg.get("min_free_disk_mb", 100)) * 1024 * 1024),
            lock_file=_path_or_default(
                registration_cfg.get("lock_file"), var_dir / "netbird-enroll.lock"
            ),
            var_dir=var_dir,
            log_dir=log_dir,
            diagnostics_dir=_path_or_default(
                storage_cfg.get("diagnostics_dir"), log_dir / "diagnostics"
            ),
        )

    def with_overrides(self, **changes: Any) -> "NetBirdSettings":
        """Return a copy with the given fields replaced."""

        return replace(self, **changes)
