"""Local client state resets."""

from __future__ import annotations

from pathlib import Path
import shutil

from client.interfaces import ServiceManager
from core.logging import log_info, log_warning


def partial_reset(service: ServiceManager, config_file: Path) -> bool:
    """Stop the service, delete only the config file, start the service.

    Returns True when the service is running again afterwards.
    """

    log_info(f"Partial reset: removing {config_file}")
    service.stop()
    removed = True
    try:
        config_file.unlink(missing_ok=True)
    except OSError as exc:
        log_warning(f"Could not remove {config_file}: {exc}")
        removed = False
    started = service.start()
    return removed and started


def full_reset(service: ServiceManager, data_dir: Path) -> bool:
    """Stop the service, clear the whole data directory, start the service."""

    log_info(f"Full reset: clearing {data_dir}")
    service.stop()
    cleared = True
    if data_dir.exists():
        for entry in data_dir.iterdir():
            try:
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            except OSError as exc:
                log_warning(f"Could not remove {entry}: {exc}")
                cleared = False
    started = service.start()
    return cleared and started
