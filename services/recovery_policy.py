"""Error classification and recovery policy for registration retries."""

from __future__ import annotations

from pathlib import Path
import time
from typing import Callable, Mapping

from client.interfaces import ServiceManager
from core.logging import log_info, log_warning
from core.models import CheckResult, ErrorKind, RecoveryAction, RecoveryKind
from services.reset import partial_reset


def _restart(wait_s: float) -> RecoveryAction:
    return RecoveryAction(RecoveryKind.RESTART_SERVICE, "Restart the daemon service", wait_s)


def _partial_reset(wait_s: float) -> RecoveryAction:
    return RecoveryAction(
        RecoveryKind.PARTIAL_RESET, "Remove local config and restart the service", wait_s
    )


def _wait_longer(wait_s: float) -> RecoveryAction:
    return RecoveryAction(RecoveryKind.WAIT_LONGER, "Wait before retrying", wait_s)


def _stop(reason: str) -> RecoveryAction:
    return RecoveryAction(RecoveryKind.NONE, reason, 0.0)


DEFAULT_ACTION = _wait_longer(30.0)

RECOVERY_TABLE: Mapping[tuple[ErrorKind, int], RecoveryAction] = {
    (ErrorKind.DEADLINE_EXCEEDED, 1): _restart(15.0),
    (ErrorKind.DEADLINE_EXCEEDED, 2): _partial_reset(30.0),
    (ErrorKind.DEADLINE_EXCEEDED, 3): _stop("Management keeps timing out"),
    (ErrorKind.CONNECTION_REFUSED, 1): _wait_longer(30.0),
    (ErrorKind.CONNECTION_REFUSED, 2): _restart(15.0),
    (ErrorKind.CONNECTION_REFUSED, 3): _partial_reset(30.0),
    (ErrorKind.VERIFICATION_FAILED, 1): RecoveryAction(
        RecoveryKind.WAIT_AND_VERIFY, "Wait for the connection to settle, then re-check", 45.0
    ),
    (ErrorKind.VERIFICATION_FAILED, 2): _partial_reset(30.0),
    (ErrorKind.VERIFICATION_FAILED, 3): _stop("Connection could not be verified"),
    (ErrorKind.INVALID_SETUP_KEY, 1): _stop("Setup key rejected; retrying cannot help"),
    (ErrorKind.NETWORK_ERROR, 1): _wait_longer(60.0),
    (ErrorKind.NETWORK_ERROR, 2): RecoveryAction(
        RecoveryKind.TEST_CONNECTIVITY, "Test connectivity to the management server", 30.0
    ),
    (ErrorKind.NETWORK_ERROR, 3): _stop("Management server unreachable"),
}

# Checked in order; the first kind with a matching pattern wins.
ERROR_PATTERNS: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (
        ErrorKind.INVALID_SETUP_KEY,
        (
            "invalid setup key",
            "setup key is invalid",
            "setup key not found",
            "setup key is expired",
            "setup key expired",
            "invalid setup-key",
            "permissiondenied",
        ),
    ),
    (
        ErrorKind.DEADLINE_EXCEEDED,
        ("deadlineexceeded", "deadline exceeded"),
    ),
    (
        ErrorKind.CONNECTION_REFUSED,
        ("connection refused", "failed to connect to daemon", "daemon is not running"),
    ),
    (
        ErrorKind.NETWORK_ERROR,
        (
            "no such host",
            "network is unreachable",
            "i/o timeout",
            "connection reset",
            "tls handshake",
            "failed to connect",
            "dial tcp",
            "code = unavailable",
        ),
    ),
)


def classify_error(output: str) -> ErrorKind:
    """Map registration command output to an ErrorKind."""

    lowered = output.lower()
    for kind, patterns in ERROR_PATTERNS:
        if any(pattern in lowered for pattern in patterns):
            return kind
    return ErrorKind.UNKNOWN


def lookup(error_kind: ErrorKind, attempt: int) -> RecoveryAction:
    """Return the recovery action for an error at a 1-based attempt number.

    Combinations missing from the table fall back to DEFAULT_ACTION.
    """

    return RECOVERY_TABLE.get((error_kind, attempt), DEFAULT_ACTION)


class RecoveryExecutor:
    """Carry out recovery actions between registration attempts."""

    def __init__(
        self,
        service: ServiceManager,
        config_file: Path,
        *,
        connectivity_check: Callable[[], CheckResult],
        connection_check: Callable[[], bool],
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._service = service
        self._config_file = Path(config_file)
        self._connectivity_check = connectivity_check
        self._connection_check = connection_check
        self._sleep = sleep

    def execute(self, action: RecoveryAction) -> bool:
        """Run the action and its wait.

        Returns True only when a wait-and-verify finds the client connected.
        """

        log_info(f"Recovery: {action.kind.value} - {action.description} (wait {action.wait_s:.0f}s)")
        kind = action.kind
        if kind is RecoveryKind.NONE:
            return False
        if kind is RecoveryKind.WAIT_AND_VERIFY:
            self._sleep(action.wait_s)
            connected = self._connection_check()
            if connected:
                log_info("Client reports connected after waiting")
            return connected

        if kind is RecoveryKind.RESTART_SERVICE:
            if not self._service.restart():
                log_warning(f"Service {self._service.service_name} restart did not complete")
        elif kind is RecoveryKind.PARTIAL_RESET:
            if not partial_reset(self._service, self._config_file):
                log_warning("Partial reset did not complete cleanly")
        elif kind is RecoveryKind.TEST_CONNECTIVITY:
            result = self._connectivity_check()
            if result.passed:
                log_info(f"Connectivity check passed: {result.detail}")
            else:
                log_warning(f"Connectivity check failed: {result.detail}")

        self._sleep(action.wait_s)
        return False
