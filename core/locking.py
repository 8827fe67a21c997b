"""Cross-process advisory lock guarding a registration run."""

from __future__ import annotations

import json
import os
from pathlib import Path
import socket
import sys
import time
from typing import IO, Any

from core.logging import log_debug, log_warning


class LockUnavailableError(RuntimeError):
    """Raised when another process already holds the run lock."""


def _lock_file(handle: IO[str]) -> None:
    if sys.platform == "win32":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
    else:
        import fcntl

        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock_file(handle: IO[str]) -> None:
    if sys.platform == "win32":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl

        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class RunLock:
    """Non-blocking file lock released on exit or process death.

    Use as a context manager around the whole enrollment flow.
    """

    def __init__(self, lock_path: Path, owner: str = "netbird-enroll") -> None:
        self.lock_path = Path(lock_path)
        self.owner = owner
        self._handle: IO[str] | None = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if self._handle is not None:
            return
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.lock_path, "a+", encoding="utf-8")
        try:
            _lock_file(handle)
        except OSError as exc:
            handle.close()
            holder = self.read_holder()
            raise LockUnavailableError(
                f"Another enrollment run holds {self.lock_path} ({holder or 'unknown holder'})"
            ) from exc
        self._handle = handle
        self._write_info(handle)
        log_debug(f"Acquired run lock {self.lock_path}")

    def release(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        try:
            _unlock_file(handle)
        except OSError as exc:
            log_warning(f"Failed to unlock {self.lock_path}: {exc}")
        finally:
            handle.close()
        log_debug(f"Released run lock {self.lock_path}")

    def read_holder(self) -> dict[str, Any] | None:
        """Return metadata written by the current holder, if readable."""

        try:
            text = self.lock_path.read_text(encoding="utf-8").strip()
            return json.loads(text) if text else None
        except (OSError, ValueError):
            return None

    def _write_info(self, handle: IO[str]) -> None:
        info = {
            "owner": self.owner,
            "hostname": socket.gethostname(),
            "pid": os.getpid(),
            "acquired_at": time.time(),
        }
        try:
            handle.seek(0)
            handle.truncate()
            handle.write(json.dumps(info))
            handle.flush()
        except OSError as exc:
            log_warning(f"Failed to write lock info: {exc}")

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
