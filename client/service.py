"""Control of the OS service hosting the NetBird daemon."""

from __future__ import annotations

from enum import Enum
import subprocess
import sys
import time
from typing import Callable, Sequence

from core.logging import log_info, log_warning


class ServiceState(str, Enum):
    """Normalized service state across service managers."""

    RUNNING = "running"
    STOPPED = "stopped"
    STARTING = "starting"
    STOPPING = "stopping"
    PAUSED = "paused"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


_SC_STATES = (
    ("START_PENDING", ServiceState.STARTING),
    ("STOP_PENDING", ServiceState.STOPPING),
    ("RUNNING", ServiceState.RUNNING),
    ("STOPPED", ServiceState.STOPPED),
    ("PAUSED", ServiceState.PAUSED),
)

_SYSTEMD_STATES = {
    "active": ServiceState.RUNNING,
    "reloading": ServiceState.RUNNING,
    "inactive": ServiceState.STOPPED,
    "failed": ServiceState.STOPPED,
    "activating": ServiceState.STARTING,
    "deactivating": ServiceState.STOPPING,
}

# sc.exe: 1056 already running, 1062 not started, 1060 does not exist.
_SC_ALREADY_RUNNING = 1056
_SC_NOT_STARTED = 1062
_SC_DOES_NOT_EXIST = 1060


def parse_sc_query(output: str) -> ServiceState:
    """Map ``sc query`` output to a service state."""

    upper = output.upper()
    if "FAILED 1060" in upper or "DOES NOT EXIST" in upper:
        return ServiceState.NOT_FOUND
    for line in upper.splitlines():
        if "STATE" not in line:
            continue
        for marker, state in _SC_STATES:
            if marker in line:
                return state
    return ServiceState.UNKNOWN


def parse_systemctl_state(output: str) -> ServiceState:
    """Map ``systemctl is-active`` output to a service state."""

    return _SYSTEMD_STATES.get(output.strip().lower(), ServiceState.UNKNOWN)


class ServiceController:
    """Query, start and stop a named service.

    Uses ``sc.exe`` on Windows and ``systemctl`` elsewhere.
    """

    def __init__(
        self,
        service_name: str,
        *,
        runner: Callable[..., "subprocess.CompletedProcess[str]"] = subprocess.run,
        windows: bool | None = None,
        timeout_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.service_name = service_name
        self._runner = runner
        self._windows = sys.platform == "win32" if windows is None else windows
        self._timeout_s = timeout_s
        self._clock = clock
        self._sleep = sleep

    def query(self) -> ServiceState:
        if self._windows:
            completed = self._run(["sc.exe", "query", self.service_name])
            if completed is None:
                return ServiceState.UNKNOWN
            if completed.returncode == _SC_DOES_NOT_EXIST:
                return ServiceState.NOT_FOUND
            return parse_sc_query(completed.stdout + completed.stderr)

        completed = self._run(["systemctl", "is-active", self.service_name])
        if completed is None:
            return ServiceState.UNKNOWN
        return parse_systemctl_state(completed.stdout)

    def is_running(self) -> bool:
        return self.query() is ServiceState.RUNNING

    def start(self, wait_s: float | None = None) -> bool:
        log_info(f"Starting service {self.service_name}")
        if self._windows:
            completed = self._run(["sc.exe", "start", self.service_name])
            accepted = completed is not None and completed.returncode in (0, _SC_ALREADY_RUNNING)
        else:
            completed = self._run(["systemctl", "start", self.service_name])
            accepted = completed is not None and completed.returncode == 0
        if not accepted:
            log_warning(f"Service {self.service_name} did not accept start: {self._describe(completed)}")
            return False
        return self.wait_for_state(ServiceState.RUNNING, self._timeout_s if wait_s is None else wait_s)

    def stop(self, wait_s: float | None = None) -> bool:
        log_info(f"Stopping service {self.service_name}")
        if self._windows:
            completed = self._run(["sc.exe", "stop", self.service_name])
            accepted = completed is not None and completed.returncode in (0, _SC_NOT_STARTED)
        else:
            completed = self._run(["systemctl", "stop", self.service_name])
            accepted = completed is not None and completed.returncode == 0
        if not accepted:
            log_warning(f"Service {self.service_name} did not accept stop: {self._describe(completed)}")
            return False
        return self.wait_for_state(ServiceState.STOPPED, self._timeout_s if wait_s is None else wait_s)

    def restart(self) -> bool:
        stopped = self.stop()
        if not stopped:
            log_warning(f"Service {self.service_name} did not stop cleanly; starting anyway")
        return self.start()

    def wait_for_state(self, target: ServiceState, timeout_s: float, interval_s: float = 1.0) -> bool:
        deadline = self._clock() + max(timeout_s, 0.0)
        while True:
            state = self.query()
            if state is target:
                return True
            if self._clock() >= deadline:
                log_warning(
                    f"Service {self.service_name} is {state.value}, expected {target.value} "
                    f"after {timeout_s:.0f}s"
                )
                return False
            self._sleep(interval_s)

    def _run(self, command: Sequence[str]) -> "subprocess.CompletedProcess[str] | None":
        try:
            return self._runner(
                list(command),
                capture_output=True,
                text=True,
                timeout=self._timeout_s,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            log_warning(f"Service command failed: {' '.join(command)} ({exc})")
            return None

    @staticmethod
    def _describe(completed: "subprocess.CompletedProcess[str] | None") -> str:
        if completed is None:
            return "command failed"
        text = (completed.stderr or completed.stdout or "").strip()
        return f"exit {completed.returncode} {text}".strip()
