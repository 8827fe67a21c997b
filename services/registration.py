"""Registration orchestrator: readiness, prerequisites, attempts, verification."""

from __future__ import annotations

import time
from typing import Callable

from client.interfaces import ClientCommands, ServiceManager
from client.network import check_tcp
from config.settings import NetBirdSettings
from core.locking import LockUnavailableError, RunLock
from core.logging import (
    SOURCE_NETBIRD,
    log_error,
    log_info,
    log_success,
    log_warning,
    logger as LOGGER,
)
from core.models import (
    CheckResult,
    ErrorKind,
    FailureCategory,
    PrerequisiteReport,
    ReadinessOutcome,
    RegistrationAttempt,
    RegistrationResult,
    RegistrationState,
    Transition,
    VerificationOutcome,
)
from services.daemon_readiness import DaemonReadinessProber
from services.outcome_verifier import OutcomeVerifier
from services.prerequisites import PrerequisiteValidator, management_endpoint
from services.recovery_policy import RecoveryExecutor, classify_error, lookup


class _Run:
    """Mutable bookkeeping for one register() call."""

    def __init__(self) -> None:
        self.transitions: list[Transition] = []
        self.attempts: list[RegistrationAttempt] = []
        self.readiness: ReadinessOutcome | None = None
        self.prerequisites: PrerequisiteReport | None = None
        self.verification: VerificationOutcome | None = None

    def enter(self, state: RegistrationState, attempt: int = 0, note: str = "") -> None:
        self.transitions.append(Transition(state=state, attempt=attempt, note=note))
        suffix = f" ({attempt})" if attempt else ""
        log_info(f"State -> {state.value}{suffix}{': ' + note if note else ''}")

    def finish(
        self,
        state: RegistrationState,
        failure: FailureCategory | None = None,
        message: str = "",
    ) -> RegistrationResult:
        self.enter(state, note=message)
        return RegistrationResult(
            state=state,
            failure=failure,
            attempts=tuple(self.attempts),
            transitions=tuple(self.transitions),
            readiness=self.readiness,
            prerequisites=self.prerequisites,
            verification=self.verification,
            message=message,
        )


class RegistrationOrchestrator:
    """Drive a NetBird registration to a terminal Succeeded or Failed result.

    Failures are reported through the returned RegistrationResult; nothing
    raised by collaborators escapes register().
    """

    def __init__(
        self,
        settings: NetBirdSettings,
        cli: ClientCommands,
        service: ServiceManager,
        *,
        prober: DaemonReadinessProber | None = None,
        validator: PrerequisiteValidator | None = None,
        verifier: OutcomeVerifier | None = None,
        recovery: RecoveryExecutor | None = None,
        lock: RunLock | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._cli = cli
        self._service = service
        self._prober = prober or DaemonReadinessProber(
            cli, service, settings.data_dir, clock=clock, sleep=sleep
        )
        self._validator = validator or PrerequisiteValidator(settings)
        self._verifier = verifier or OutcomeVerifier(
            cli, interval_s=settings.verify_interval_s, clock=clock, sleep=sleep
        )
        self._recovery = recovery or RecoveryExecutor(
            service,
            settings.config_file,
            connectivity_check=self._check_management_connectivity,
            connection_check=lambda: self._verifier.check_once().connected,
            sleep=sleep,
        )
        self._lock = lock
        self._active_url = settings.management_url

    def register(
        self,
        setup_key: str,
        management_url: str | None = None,
        max_retries: int | None = None,
        auto_recover: bool | None = None,
    ) -> RegistrationResult:
        retries = self._settings.max_retries if max_retries is None else int(max_retries)
        recover = self._settings.auto_recover if auto_recover is None else bool(auto_recover)
        url = management_url or self._settings.management_url
        self._active_url = url

        run = _Run()
        run.enter(RegistrationState.INIT)
        if retries < 1:
            message = f"max_retries must be at least 1, got {retries}"
            log_error(message)
            return run.finish(
                RegistrationState.FAILED, FailureCategory.REGISTRATION_FAILED, message
            )
        if self._lock is not None:
            try:
                self._lock.acquire()
            except LockUnavailableError as exc:
                log_error(str(exc))
                return run.finish(RegistrationState.FAILED, FailureCategory.LOCKED, str(exc))
            except OSError as exc:
                message = f"Cannot create run lock {self._lock.lock_path}: {exc}"
                log_error(message)
                return run.finish(RegistrationState.FAILED, FailureCategory.LOCKED, message)
        try:
            return self._run(run, setup_key, url, retries, recover)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Registration aborted by unexpected error: %s", exc)
            return run.finish(
                RegistrationState.FAILED,
                FailureCategory.REGISTRATION_FAILED,
                f"unexpected error: {exc}",
            )
        finally:
            if self._lock is not None:
                self._lock.release()

    def _run(
        self,
        run: _Run,
        setup_key: str,
        management_url: str,
        max_retries: int,
        auto_recover: bool,
    ) -> RegistrationResult:
        settings = self._settings

        run.enter(RegistrationState.AWAITING_READINESS)
        run.readiness = self._prober.probe(
            settings.readiness_timeout_s, settings.readiness_interval_s
        )
        if not run.readiness.ready:
            if not auto_recover:
                log_error("Daemon not ready and auto-recovery disabled")
                return run.finish(
                    RegistrationState.FAILED, FailureCategory.DAEMON_NOT_READY, "daemon not ready"
                )
            log_warning(
                f"Daemon not ready; restarting service {self._service.service_name}", SOURCE_NETBIRD
            )
            self._service.restart()
            run.readiness = self._prober.probe(
                settings.readiness_recovery_timeout_s, settings.readiness_interval_s
            )
            if not run.readiness.ready:
                log_error("Daemon still not ready after service restart")
                return run.finish(
                    RegistrationState.FAILED,
                    FailureCategory.DAEMON_NOT_READY,
                    "daemon not ready after restart",
                )

        run.enter(RegistrationState.VALIDATING_PREREQUISITES)
        run.prerequisites = self._validator.validate(setup_key, management_url)
        if not run.prerequisites.is_valid:
            names = ", ".join(check.name for check in run.prerequisites.critical_failures)
            log_error(f"Registration prerequisites failed: {names}")
            return run.finish(
                RegistrationState.FAILED,
                FailureCategory.PREREQUISITES_FAILED,
                f"critical prerequisites failed: {names}",
            )

        for attempt in range(1, max_retries + 1):
            run.enter(RegistrationState.ATTEMPTING, attempt)
            log_info(
                f"Registration attempt {attempt}/{max_retries} against {management_url}",
                SOURCE_NETBIRD,
            )
            result = self._cli.up(setup_key, management_url)

            if result.ok:
                run.enter(RegistrationState.VERIFYING, attempt)
                run.verification = self._verifier.verify(settings.verify_timeout_s)
                if run.verification.confirmed:
                    run.attempts.append(
                        RegistrationAttempt(number=attempt, succeeded=True, output=result.output)
                    )
                    log_success(f"Registration succeeded on attempt {attempt}", SOURCE_NETBIRD)
                    return run.finish(RegistrationState.SUCCEEDED, message="registered")
                error_kind = ErrorKind.VERIFICATION_FAILED
                output = run.verification.last_output
            else:
                error_kind = classify_error(result.output)
                output = result.output
                log_warning(
                    f"Attempt {attempt} failed ({error_kind.value}): {output.strip()[:300]}",
                    SOURCE_NETBIRD,
                )

            if attempt >= max_retries:
                run.attempts.append(
                    RegistrationAttempt(
                        number=attempt, succeeded=False, error_kind=error_kind, output=output
                    )
                )
                break

            action = lookup(error_kind, attempt)
            run.attempts.append(
                RegistrationAttempt(
                    number=attempt,
                    succeeded=False,
                    error_kind=error_kind,
                    output=output,
                    recovery=action,
                )
            )
            if action.stops_retrying:
                log_error(f"Not retrying after {error_kind.value}: {action.description}")
                return run.finish(
                    RegistrationState.FAILED,
                    FailureCategory.REGISTRATION_FAILED,
                    f"{error_kind.value}: {action.description}",
                )
            if self._recovery.execute(action):
                log_success("Client connected during recovery wait", SOURCE_NETBIRD)
                return run.finish(RegistrationState.SUCCEEDED, message="registered")

        last = run.attempts[-1] if run.attempts else None
        kind = last.error_kind.value if last and last.error_kind else "unknown"
        log_error(f"Registration failed after {max_retries} attempts (last error {kind})")
        return run.finish(
            RegistrationState.FAILED,
            FailureCategory.REGISTRATION_FAILED,
            f"failed after {max_retries} attempts ({kind})",
        )

    def _check_management_connectivity(self) -> CheckResult:
        host, port = management_endpoint(self._active_url, self._settings.management_port)
        return check_tcp(host, port, 10.0, name="ManagementReachable")
