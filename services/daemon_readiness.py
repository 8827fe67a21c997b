"""Daemon readiness probing ahead of registration."""

from __future__ import annotations

from pathlib import Path
import time
from typing import Callable
import uuid

from client.cli import CommandResult
from client.interfaces import ClientCommands, ServiceManager
from core.logging import SOURCE_NETBIRD, log_info, log_success, log_warning
from core.models import CheckResult, ReadinessOutcome, ReadinessReport


SERVICE_RUNNING = "ServiceRunning"
DAEMON_RESPONDING = "DaemonResponding"
TRANSPORT_OPEN = "GRPCConnectionOpen"
API_RESPONDING = "APIResponding"
NO_ACTIVE_CONNECTIONS = "NoActiveConnections"
CONFIG_WRITABLE = "ConfigWritable"

CHECK_ORDER = (
    SERVICE_RUNNING,
    DAEMON_RESPONDING,
    TRANSPORT_OPEN,
    API_RESPONDING,
    NO_ACTIVE_CONNECTIONS,
    CONFIG_WRITABLE,
)

TRANSPORT_ERROR_MARKERS = (
    "connection refused",
    "failed to connect",
    "dial",
    "rpc error",
    "deadline exceeded",
    "deadlineexceeded",
)
ACTIVE_CONNECTION_MARKERS = (
    "Management: Connected",
    "Status: Connected",
)


def find_transport_errors(output: str) -> list[str]:
    """Return the transport error markers present in CLI output."""

    lowered = output.lower()
    return [marker for marker in TRANSPORT_ERROR_MARKERS if marker in lowered]


def has_active_connection(output: str) -> bool:
    return any(marker in output for marker in ACTIVE_CONNECTION_MARKERS)


class DaemonReadinessProber:
    """Evaluate the ordered readiness chain and poll it until ready.

    Each check presupposes the previous one passed; once one fails the rest
    are reported as not evaluated.
    """

    def __init__(
        self,
        cli: ClientCommands,
        service: ServiceManager,
        data_dir: Path,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._cli = cli
        self._service = service
        self._data_dir = Path(data_dir)
        self._clock = clock
        self._sleep = sleep

    def evaluate(self) -> ReadinessReport:
        """Run the check chain once."""

        results: list[CheckResult] = []

        def record(name: str, passed: bool, detail: str) -> bool:
            results.append(CheckResult(name=name, passed=passed, detail=detail))
            return passed

        status: CommandResult | None = None
        detail: CommandResult | None = None

        if record(SERVICE_RUNNING, *self._check_service()):
            status = self._cli.status()
            if record(DAEMON_RESPONDING, *self._check_daemon(status)):
                if record(TRANSPORT_OPEN, *self._check_transport(status)):
                    detail = self._cli.status_detail()
                    if record(API_RESPONDING, *self._check_api(detail)):
                        if record(NO_ACTIVE_CONNECTIONS, *self._check_not_connected(status, detail)):
                            record(CONFIG_WRITABLE, *self._check_config_writable())

        evaluated = {result.name for result in results}
        for name in CHECK_ORDER:
            if name not in evaluated:
                results.append(
                    CheckResult(name=name, passed=False, evaluated=False, detail="skipped")
                )
        return ReadinessReport(checks=tuple(results))

    def probe(self, max_wait_s: float, interval_s: float = 5.0) -> ReadinessOutcome:
        """Poll until every check passes or ``max_wait_s`` elapses."""

        start = self._clock()
        deadline = start + max(max_wait_s, 0.0)
        iterations = 0
        log_info(
            f"Waiting up to {max_wait_s:.0f}s for daemon readiness "
            f"(service {self._service.service_name})",
            SOURCE_NETBIRD,
        )
        while True:
            iterations += 1
            report = self.evaluate()
            self._log_report(report, iterations)
            now = self._clock()
            if report.ready:
                log_success(
                    f"Daemon ready after {now - start:.0f}s ({iterations} checks)", SOURCE_NETBIRD
                )
                return ReadinessOutcome(
                    ready=True, report=report, iterations=iterations, elapsed_s=now - start
                )
            remaining = deadline - now
            if remaining <= 0:
                failure = report.first_failure
                log_warning(
                    f"Daemon not ready after {now - start:.0f}s; last failing check: "
                    f"{failure.name if failure else 'none'}",
                    SOURCE_NETBIRD,
                )
                return ReadinessOutcome(
                    ready=False, report=report, iterations=iterations, elapsed_s=now - start
                )
            self._sleep(min(interval_s, remaining))

    def _log_report(self, report: ReadinessReport, iteration: int) -> None:
        for check in report.checks:
            if not check.evaluated:
                continue
            mark = "PASS" if check.passed else "FAIL"
            log_info(f"  [{mark}] {check.name}: {check.detail}", SOURCE_NETBIRD, style="dim")
        log_info(
            f"Readiness check {iteration}: {report.passed_count}/{report.total} passed",
            SOURCE_NETBIRD,
        )

    def _check_service(self) -> tuple[bool, str]:
        if self._service.is_running():
            return True, "service running"
        return False, "service not running"

    @staticmethod
    def _check_daemon(status: CommandResult) -> tuple[bool, str]:
        if status.daemon_reachable:
            return True, f"status exited {status.returncode}"
        return False, f"status exited {status.returncode} {status.error}".strip()

    @staticmethod
    def _check_transport(status: CommandResult) -> tuple[bool, str]:
        errors = find_transport_errors(status.output)
        if errors:
            return False, f"transport errors: {', '.join(errors)}"
        return True, "no transport errors"

    @staticmethod
    def _check_api(detail: CommandResult) -> tuple[bool, str]:
        if not detail.daemon_reachable:
            return False, f"detailed status exited {detail.returncode}"
        if "connection refused" in detail.output.lower():
            return False, "detailed status reports connection refused"
        return True, "detailed status answered"

    @staticmethod
    def _check_not_connected(status: CommandResult, detail: CommandResult) -> tuple[bool, str]:
        if has_active_connection(status.output) or has_active_connection(detail.output):
            return False, "client already connected"
        return True, "no active connection"

    def _check_config_writable(self) -> tuple[bool, str]:
        probe_file = self._data_dir / f".readiness-{uuid.uuid4().hex}.tmp"
        try:
            probe_file.write_text("ok", encoding="utf-8")
            probe_file.unlink()
        except OSError as exc:
            return False, f"cannot write to {self._data_dir} ({exc})"
        return True, f"{self._data_dir} writable"
