"""Models for daemon readiness, prerequisites and registration runs."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a failed registration attempt."""

    DEADLINE_EXCEEDED = "DeadlineExceeded"
    CONNECTION_REFUSED = "ConnectionRefused"
    VERIFICATION_FAILED = "VerificationFailed"
    INVALID_SETUP_KEY = "InvalidSetupKey"
    NETWORK_ERROR = "NetworkError"
    UNKNOWN = "Unknown"


class RecoveryKind(str, Enum):
    """Remedial action taken between registration attempts."""

    RESTART_SERVICE = "RestartService"
    PARTIAL_RESET = "PartialReset"
    WAIT_LONGER = "WaitLonger"
    WAIT_AND_VERIFY = "WaitAndVerify"
    TEST_CONNECTIVITY = "TestConnectivity"
    NONE = "None"


@dataclass(frozen=True)
class RecoveryAction:
    """Recovery step plus the delay to observe before the next attempt."""

    kind: RecoveryKind
    description: str
    wait_s: float = 0.0

    @property
    def stops_retrying(self) -> bool:
        return self.kind is RecoveryKind.NONE


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one named check.

    ``evaluated`` is False when an earlier check in a dependency chain
    failed and this one was skipped; ``passed`` is then always False.
    """

    name: str
    passed: bool
    evaluated: bool = True
    detail: str = ""


@dataclass(frozen=True)
class ReadinessReport:
    """Ordered daemon readiness checks from a single poll."""

    checks: tuple[CheckResult, ...]

    @property
    def ready(self) -> bool:
        return bool(self.checks) and all(check.passed for check in self.checks)

    @property
    def passed_count(self) -> int:
        return sum(1 for check in self.checks if check.passed)

    @property
    def total(self) -> int:
        return len(self.checks)

    @property
    def first_failure(self) -> CheckResult | None:
        for check in self.checks:
            if not check.passed:
                return check
        return None

    def get(self, name: str) -> CheckResult | None:
        for check in self.checks:
            if check.name == name:
                return check
        return None


@dataclass(frozen=True)
class ReadinessOutcome:
    """Result of polling the daemon until ready or out of time."""

    ready: bool
    report: ReadinessReport
    iterations: int
    elapsed_s: float


@dataclass(frozen=True)
class PrerequisiteReport:
    """Registration prerequisites split into critical and advisory checks."""

    checks: tuple[CheckResult, ...]
    critical: frozenset[str] = frozenset(
        {"ValidSetupKey", "ManagementReachable", "NoConflictingState"}
    )

    @property
    def is_valid(self) -> bool:
        return not self.critical_failures

    @property
    def critical_failures(self) -> tuple[CheckResult, ...]:
        return tuple(
            check for check in self.checks if check.name in self.critical and not check.passed
        )

    @property
    def advisory_failures(self) -> tuple[CheckResult, ...]:
        return tuple(
            check for check in self.checks if check.name not in self.critical and not check.passed
        )

    def get(self, name: str) -> CheckResult | None:
        for check in self.checks:
            if check.name == name:
                return check
        return None


@dataclass(frozen=True)
class ConnectionState:
    """Connection judgement derived from status text."""

    connected: bool
    indicators: tuple[str, ...] = ()
    peer_markers: tuple[str, ...] = ()


@dataclass(frozen=True)
class VerificationOutcome:
    """Result of polling status after a registration command succeeded."""

    confirmed: bool
    state: ConnectionState
    polls: int
    last_output: str = ""


@dataclass(frozen=True)
class RegistrationAttempt:
    """One invocation of the registration command."""

    number: int
    succeeded: bool
    error_kind: ErrorKind | None = None
    output: str = ""
    recovery: RecoveryAction | None = None


class RegistrationState(str, Enum):
    """States of the registration state machine."""

    INIT = "init"
    AWAITING_READINESS = "awaiting_readiness"
    VALIDATING_PREREQUISITES = "validating_prerequisites"
    ATTEMPTING = "attempting"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureCategory(str, Enum):
    """Top-level reason a registration run failed."""

    DAEMON_NOT_READY = "daemon_not_ready"
    PREREQUISITES_FAILED = "prerequisites_failed"
    REGISTRATION_FAILED = "registration_failed"
    LOCKED = "locked"


@dataclass(frozen=True)
class Transition:
    """State change recorded during a registration run."""

    state: RegistrationState
    attempt: int = 0
    note: str = ""


@dataclass(frozen=True)
class RegistrationResult:
    """Terminal result of a registration run."""

    state: RegistrationState
    failure: FailureCategory | None = None
    attempts: tuple[RegistrationAttempt, ...] = ()
    transitions: tuple[Transition, ...] = ()
    readiness: ReadinessOutcome | None = None
    prerequisites: PrerequisiteReport | None = None
    verification: VerificationOutcome | None = None
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.state is RegistrationState.SUCCEEDED
