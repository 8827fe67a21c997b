"""Run-scoped storage for enrollment logs and diagnostic bundles."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import threading
from typing import Any

from config import ConfigController
from config.settings import NetBirdSettings


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageInfo:
    """Metadata about the current storage run."""

    run_id: int
    run_id_file: Path
    log_dir: Path
    log_file: Path
    diagnostics_dir: Path


class StorageController:
    """Singleton controller for per-run log and diagnostics paths."""

    _instance: "StorageController | None" = None
    _lock = threading.Lock()

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        if StorageController._instance is not None:
            raise RuntimeError("You cannot create another StorageController class")

        if config is None:
            config = ConfigController.get_instance().get_config()
        self.config = config

        var_dir, log_dir, diagnostics_dir = self._resolve_storage_dirs()
        self.var_dir = var_dir
        self.log_dir = log_dir
        self.diagnostics_dir = diagnostics_dir

        self.run_id_file = var_dir / "current_run"
        self.run_id = self.get_next_run_number(var_dir)
        StorageController._instance = self

    @classmethod
    def get_instance(cls) -> "StorageController":
        """Return the singleton instance of the controller."""

        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def get_next_run_number(self, var_dir: Path) -> int:
        """Return the next run number, persisting to the run-id file."""

        with self._lock:
            var_dir.mkdir(parents=True, exist_ok=True)

            next_run_number = 0
            if self.run_id_file.is_file():
                current_run_number = self.run_id_file.read_text(encoding="utf-8").strip()
                if current_run_number.isdigit():
                    next_run_number = int(current_run_number) + 1
            self.run_id_file.write_text(str(next_run_number), encoding="utf-8")
            return next_run_number

    def get_log_file_path(self) -> Path:
        """Return the log file path for the current run."""

        return self.log_dir / f"run_{self.run_id}.log"

    def get_diagnostics_path(self) -> Path:
        """Return the diagnostic bundle path for the current run."""

        self.diagnostics_dir.mkdir(parents=True, exist_ok=True)
        return self.diagnostics_dir / f"diagnostics_run_{self.run_id}.json"

    def recent_log_files(self, limit: int = 5) -> list[Path]:
        """Return the newest run logs, most recent first."""

        if not self.log_dir.is_dir():
            return []
        try:
            logs = sorted(
                self.log_dir.glob("run_*.log"),
                key=lambda path: path.stat().st_mtime,
                reverse=True,
            )
        except OSError as exc:
            LOGGER.warning("Could not list log files in %s: %s", self.log_dir, exc)
            return []
        return logs[:limit]

    def get_storage_info(self) -> StorageInfo:
        """Return metadata about the current run storage."""

        return StorageInfo(
            run_id=self.run_id,
            run_id_file=self.run_id_file,
            log_dir=self.log_dir,
            log_file=self.get_log_file_path(),
            diagnostics_dir=self.diagnostics_dir,
        )

    def _resolve_storage_dirs(self) -> tuple[Path, Path, Path]:
        """Resolve storage directories through the typed settings."""

        settings = NetBirdSettings.from_config(self.config)
        return settings.var_dir, settings.log_dir, settings.diagnostics_dir
