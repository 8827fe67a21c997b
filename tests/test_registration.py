"""Tests for the registration orchestrator state machine."""

from __future__ import annotations

from pathlib import Path

import pytest

from client.cli import CommandResult
from config.settings import NetBirdSettings
from core.locking import RunLock
from core.models import (
    CheckResult,
    ErrorKind,
    FailureCategory,
    RecoveryKind,
    RegistrationState,
)
from services.daemon_readiness import SERVICE_RUNNING
from services.prerequisites import FIREWALL_OK, PrerequisiteValidator
from services.registration import RegistrationOrchestrator

VALID_KEY = "ABCDEFGHIJKLMNOPQRSTUVWXYZ012345"
IDLE_STATUS = "Daemon status: NeedsLogin\n"
CONNECTED_STATUS = (
    "Management: Connected\n"
    "Signal: Connected\n"
    "NetBird IP: 100.64.0.9/16\n"
    "Peers count: 1/1 Connected\n"
)
DEADLINE_OUTPUT = "rpc error: code = DeadlineExceeded desc = context deadline exceeded"
REFUSED_OUTPUT = "dial unix /var/run/netbird.sock: connect: connection refused"
INVALID_KEY_OUTPUT = "Error: invalid setup key"


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class _FakeService:
    service_name = "netbird"

    def __init__(self, running: bool = True, restart_fixes: bool = True) -> None:
        self.running = running
        self.restart_fixes = restart_fixes
        self.calls: list[str] = []

    def is_running(self) -> bool:
        return self.running

    def start(self, wait_s: float | None = None) -> bool:
        self.calls.append("start")
        self.running = True
        return True

    def stop(self, wait_s: float | None = None) -> bool:
        self.calls.append("stop")
        self.running = False
        return True

    def restart(self) -> bool:
        self.calls.append("restart")
        self.running = self.restart_fixes
        return self.running


class _FakeCli:
    """Scripted client; connected once an ``up`` succeeds or at ``connect_at``."""

    def __init__(
        self,
        clock: _FakeClock,
        up_results: list[CommandResult] | None = None,
        connect_at: float | None = None,
    ) -> None:
        self._clock = clock
        self._up_results = list(up_results or [])
        self._connect_at = connect_at
        self._registered = False
        self.up_calls: list[tuple[str, str | None]] = []

    def _connected(self) -> bool:
        if self._connect_at is not None:
            return self._clock.now >= self._connect_at
        return self._registered

    def status(self) -> CommandResult:
        return self._status()

    def status_detail(self) -> CommandResult:
        return self._status()

    def up(self, setup_key: str, management_url: str | None = None) -> CommandResult:
        self.up_calls.append((setup_key, management_url))
        result = self._up_results.pop(0)
        if result.ok:
            self._registered = True
        return result

    def _status(self) -> CommandResult:
        if self._connected():
            return CommandResult(args=("netbird", "status"), returncode=0, stdout=CONNECTED_STATUS)
        return CommandResult(args=("netbird", "status"), returncode=1, stdout=IDLE_STATUS)


class _FakeFirewall:
    def check(self) -> CheckResult:
        return CheckResult(FIREWALL_OK, passed=True)


def _up_ok() -> CommandResult:
    return CommandResult(args=("netbird", "up"), returncode=0, stdout="Connected")


def _up_failed(output: str) -> CommandResult:
    return CommandResult(args=("netbird", "up"), returncode=1, stderr=output)


def _settings(tmp_path: Path, **overrides) -> NetBirdSettings:
    values = {
        "data_dir": tmp_path,
        "config_file": tmp_path / "config.json",
        "system_drive": tmp_path,
        "min_free_disk_bytes": 0,
        "management_url": "https://netbird.example.com:443",
        "readiness_timeout_s": 10.0,
        "readiness_recovery_timeout_s": 5.0,
        "readiness_interval_s": 5.0,
        "verify_timeout_s": 10.0,
        "verify_interval_s": 5.0,
        "lock_file": tmp_path / "enroll.lock",
    }
    values.update(overrides)
    return NetBirdSettings.defaults().with_overrides(**values)


def _orchestrator(
    tmp_path: Path,
    cli: _FakeCli,
    service: _FakeService,
    clock: _FakeClock,
    *,
    lock: RunLock | None = None,
    **settings_overrides,
) -> RegistrationOrchestrator:
    settings = _settings(tmp_path, **settings_overrides)
    validator = PrerequisiteValidator(
        settings,
        firewall=_FakeFirewall(),
        tcp_probe=lambda host, port, timeout_s: CheckResult("tcp", passed=True),
    )
    return RegistrationOrchestrator(
        settings,
        cli,
        service,
        validator=validator,
        lock=lock,
        clock=clock.time,
        sleep=clock.sleep,
    )


def _states(result) -> list[RegistrationState]:
    return [transition.state for transition in result.transitions]


def test_registers_on_first_attempt(tmp_path: Path) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_ok()])
    service = _FakeService()

    result = _orchestrator(tmp_path, cli, service, clock).register(VALID_KEY)

    assert result.succeeded is True
    assert result.failure is None
    assert len(result.attempts) == 1
    assert result.verification.confirmed is True
    assert cli.up_calls == [(VALID_KEY, "https://netbird.example.com:443")]
    assert _states(result) == [
        RegistrationState.INIT,
        RegistrationState.AWAITING_READINESS,
        RegistrationState.VALIDATING_PREREQUISITES,
        RegistrationState.ATTEMPTING,
        RegistrationState.VERIFYING,
        RegistrationState.SUCCEEDED,
    ]


def test_deadline_exceeded_restarts_service_then_retries(tmp_path: Path) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_failed(DEADLINE_OUTPUT), _up_ok()])
    service = _FakeService()

    result = _orchestrator(tmp_path, cli, service, clock).register(VALID_KEY)

    assert result.succeeded is True
    assert len(cli.up_calls) == 2
    first = result.attempts[0]
    assert first.error_kind is ErrorKind.DEADLINE_EXCEEDED
    assert first.recovery.kind is RecoveryKind.RESTART_SERVICE
    assert service.calls == ["restart"]
    assert 15.0 in clock.sleeps
    attempts = [t.attempt for t in result.transitions if t.state is RegistrationState.ATTEMPTING]
    assert attempts == [1, 2]


def test_invalid_setup_key_stops_after_one_attempt(tmp_path: Path) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_failed(INVALID_KEY_OUTPUT)] * 5)
    service = _FakeService()

    result = _orchestrator(tmp_path, cli, service, clock).register(VALID_KEY, max_retries=5)

    assert result.state is RegistrationState.FAILED
    assert result.failure is FailureCategory.REGISTRATION_FAILED
    assert len(cli.up_calls) == 1
    assert result.attempts[0].error_kind is ErrorKind.INVALID_SETUP_KEY
    assert result.attempts[0].recovery.kind is RecoveryKind.NONE
    assert service.calls == []


def test_daemon_not_ready_restarts_once_then_fails(tmp_path: Path) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_ok()])
    service = _FakeService(running=False, restart_fixes=False)

    result = _orchestrator(tmp_path, cli, service, clock).register(VALID_KEY, auto_recover=True)

    assert result.state is RegistrationState.FAILED
    assert result.failure is FailureCategory.DAEMON_NOT_READY
    assert service.calls == ["restart"]
    assert cli.up_calls == []
    assert result.readiness.report.first_failure.name == SERVICE_RUNNING
    assert RegistrationState.VALIDATING_PREREQUISITES not in _states(result)


def test_daemon_recovered_by_restart_continues(tmp_path: Path) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_ok()])
    service = _FakeService(running=False, restart_fixes=True)

    result = _orchestrator(tmp_path, cli, service, clock).register(VALID_KEY)

    assert result.succeeded is True
    assert service.calls == ["restart"]


def test_daemon_not_ready_without_auto_recover(tmp_path: Path) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_ok()])
    service = _FakeService(running=False)

    result = _orchestrator(tmp_path, cli, service, clock).register(VALID_KEY, auto_recover=False)

    assert result.failure is FailureCategory.DAEMON_NOT_READY
    assert service.calls == []


def test_attempts_are_capped_at_max_retries(tmp_path: Path) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_failed(REFUSED_OUTPUT)] * 3)
    service = _FakeService()

    result = _orchestrator(tmp_path, cli, service, clock).register(VALID_KEY, max_retries=3)

    assert result.failure is FailureCategory.REGISTRATION_FAILED
    assert len(cli.up_calls) == 3
    assert [attempt.number for attempt in result.attempts] == [1, 2, 3]
    assert result.attempts[0].recovery.kind is RecoveryKind.WAIT_LONGER
    assert result.attempts[1].recovery.kind is RecoveryKind.RESTART_SERVICE
    assert result.attempts[2].recovery is None
    assert service.calls == ["restart"]


def test_single_retry_makes_one_attempt(tmp_path: Path) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_failed(DEADLINE_OUTPUT)])
    service = _FakeService()

    result = _orchestrator(tmp_path, cli, service, clock).register(VALID_KEY, max_retries=1)

    assert result.failure is FailureCategory.REGISTRATION_FAILED
    assert len(cli.up_calls) == 1
    assert service.calls == []


def test_unverified_registration_counts_as_failure(tmp_path: Path) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_ok(), _up_ok()], connect_at=1e9)
    service = _FakeService()

    result = _orchestrator(tmp_path, cli, service, clock).register(VALID_KEY, max_retries=2)

    assert result.failure is FailureCategory.REGISTRATION_FAILED
    assert [attempt.error_kind for attempt in result.attempts] == [
        ErrorKind.VERIFICATION_FAILED,
        ErrorKind.VERIFICATION_FAILED,
    ]
    assert result.attempts[0].recovery.kind is RecoveryKind.WAIT_AND_VERIFY
    assert result.verification.confirmed is False


def test_connection_during_recovery_wait_succeeds(tmp_path: Path) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_ok()], connect_at=30.0)
    service = _FakeService()

    result = _orchestrator(tmp_path, cli, service, clock).register(VALID_KEY, max_retries=3)

    assert result.succeeded is True
    assert len(cli.up_calls) == 1
    assert 45.0 in clock.sleeps


def test_invalid_key_format_fails_prerequisites(tmp_path: Path) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_ok()])

    result = _orchestrator(tmp_path, cli, _FakeService(), clock).register("short")

    assert result.failure is FailureCategory.PREREQUISITES_FAILED
    assert cli.up_calls == []
    assert result.prerequisites.is_valid is False


def test_held_lock_fails_without_touching_client(tmp_path: Path) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_ok()])
    lock_path = tmp_path / "enroll.lock"
    holder = RunLock(lock_path, owner="other-run")
    holder.acquire()
    try:
        orchestrator = _orchestrator(tmp_path, cli, _FakeService(), clock, lock=RunLock(lock_path))
        result = orchestrator.register(VALID_KEY)
    finally:
        holder.release()

    assert result.failure is FailureCategory.LOCKED
    assert cli.up_calls == []
    assert _states(result) == [RegistrationState.INIT, RegistrationState.FAILED]


def test_lock_released_after_run(tmp_path: Path) -> None:
    clock = _FakeClock()
    lock = RunLock(tmp_path / "enroll.lock")
    cli = _FakeCli(clock, [_up_ok()])

    result = _orchestrator(tmp_path, cli, _FakeService(), clock, lock=lock).register(VALID_KEY)

    assert result.succeeded is True
    assert lock.held is False


def test_unexpected_error_is_reported(tmp_path: Path) -> None:
    clock = _FakeClock()
    lock = RunLock(tmp_path / "enroll.lock")

    class _ExplodingCli(_FakeCli):
        def up(self, setup_key, management_url=None):
            raise RuntimeError("boom")

    cli = _ExplodingCli(clock)

    result = _orchestrator(tmp_path, cli, _FakeService(), clock, lock=lock).register(VALID_KEY)

    assert result.state is RegistrationState.FAILED
    assert result.failure is FailureCategory.REGISTRATION_FAILED
    assert "boom" in result.message
    assert lock.held is False


@pytest.mark.parametrize("max_retries", [0, -2])
def test_non_positive_max_retries_fails_without_attempts(
    tmp_path: Path, max_retries: int
) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_ok()])
    lock = RunLock(tmp_path / "enroll.lock")
    orchestrator = _orchestrator(tmp_path, cli, _FakeService(), clock, lock=lock)

    result = orchestrator.register(VALID_KEY, max_retries=max_retries)

    assert result.state is RegistrationState.FAILED
    assert result.failure is FailureCategory.REGISTRATION_FAILED
    assert "max_retries" in result.message
    assert cli.up_calls == []
    assert result.attempts == ()
    assert lock.held is False


def test_unusable_lock_directory_fails_without_raising(tmp_path: Path) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_ok()])
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    lock = RunLock(blocker / "enroll.lock")
    orchestrator = _orchestrator(tmp_path, cli, _FakeService(), clock, lock=lock)

    result = orchestrator.register(VALID_KEY)

    assert result.state is RegistrationState.FAILED
    assert result.failure is FailureCategory.LOCKED
    assert "enroll.lock" in result.message
    assert cli.up_calls == []
    assert lock.held is False


def test_explicit_management_url_is_used(tmp_path: Path) -> None:
    clock = _FakeClock()
    cli = _FakeCli(clock, [_up_ok()])

    _orchestrator(tmp_path, cli, _FakeService(), clock).register(
        VALID_KEY, management_url="https://other.example.com:8443"
    )

    assert cli.up_calls == [(VALID_KEY, "https://other.example.com:8443")]
