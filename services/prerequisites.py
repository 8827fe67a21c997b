"""Registration prerequisite validation."""

from __future__ import annotations

import json
from pathlib import Path
import re
import shutil
from typing import Callable
from urllib.parse import urlparse

from client.firewall import FirewallInspector
from client.network import check_tcp
from config.settings import DEFAULT_MANAGEMENT_HOST, DEFAULT_MANAGEMENT_URL, NetBirdSettings
from core.logging import log_info, log_warning
from core.models import CheckResult, PrerequisiteReport


VALID_SETUP_KEY = "ValidSetupKey"
MANAGEMENT_REACHABLE = "ManagementReachable"
NO_CONFLICTING_STATE = "NoConflictingState"
SUFFICIENT_DISK_SPACE = "SufficientDiskSpace"
FIREWALL_OK = "FirewallOk"

MIN_SETUP_KEY_LENGTH = 20
_TOKEN_KEY = re.compile(r"^[A-Za-z0-9+/=]+$")
_UUID_KEY = re.compile(
    r"^[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}$"
)

TcpProbe = Callable[[str, int, float], CheckResult]


def validate_setup_key(setup_key: str | None) -> CheckResult:
    """Check the key against the token heuristic, accepting UUID keys too."""

    key = (setup_key or "").strip()
    if not key:
        return CheckResult(VALID_SETUP_KEY, passed=False, detail="setup key is empty")
    if _UUID_KEY.match(key):
        return CheckResult(VALID_SETUP_KEY, passed=True, detail="UUID setup key")
    if len(key) < MIN_SETUP_KEY_LENGTH:
        return CheckResult(
            VALID_SETUP_KEY,
            passed=False,
            detail=f"setup key too short ({len(key)} < {MIN_SETUP_KEY_LENGTH})",
        )
    if not _TOKEN_KEY.match(key):
        return CheckResult(VALID_SETUP_KEY, passed=False, detail="setup key has invalid characters")
    return CheckResult(VALID_SETUP_KEY, passed=True, detail="setup key format accepted")


def management_endpoint(management_url: str | None, default_port: int = 443) -> tuple[str, int]:
    """Resolve the host and port to probe for a management URL.

    The default public endpoint is always probed on 443. A custom URL that
    names an explicit port (self-hosted servers commonly listen on 33073) is
    probed on that port; otherwise ``default_port`` is used, which is 443
    unless ``netbird.management_port`` overrides it.
    """

    url = (management_url or "").strip() or DEFAULT_MANAGEMENT_URL
    if url.rstrip("/") == DEFAULT_MANAGEMENT_URL:
        return DEFAULT_MANAGEMENT_HOST, 443
    parsed = urlparse(url if "://" in url else f"https://{url}")
    host = parsed.hostname or DEFAULT_MANAGEMENT_HOST
    try:
        port = parsed.port or default_port
    except ValueError:
        port = default_port
    return host, port


def _normalize_url(url: str) -> str:
    return url.strip().rstrip("/").lower()


def check_conflicting_state(config_file: Path, management_url: str | None) -> CheckResult:
    """Compare the management URL recorded in local config with the requested one.

    A missing or unreadable config is not a conflict.
    """

    if not config_file.exists():
        return CheckResult(NO_CONFLICTING_STATE, passed=True, detail="no local config")
    try:
        payload = json.loads(config_file.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        log_warning(f"Local config {config_file} unreadable, ignoring: {exc}")
        return CheckResult(NO_CONFLICTING_STATE, passed=True, detail="local config unreadable")

    recorded = _recorded_management_url(payload)
    if not recorded:
        return CheckResult(NO_CONFLICTING_STATE, passed=True, detail="no management URL recorded")
    requested = (management_url or "").strip() or DEFAULT_MANAGEMENT_URL
    if _normalize_url(recorded) == _normalize_url(requested):
        return CheckResult(NO_CONFLICTING_STATE, passed=True, detail="management URL matches")
    return CheckResult(
        NO_CONFLICTING_STATE,
        passed=False,
        detail=f"local config points at {recorded}, requested {requested}",
    )


def _recorded_management_url(payload: object) -> str:
    if not isinstance(payload, dict):
        return ""
    value = payload.get("ManagementURL")
    if isinstance(value, dict):
        # Go url.URL serialization
        scheme = value.get("Scheme") or "https"
        host = value.get("Host") or ""
        return f"{scheme}://{host}" if host else ""
    if isinstance(value, str):
        return value
    return ""


def check_disk_space(path: Path, min_free_bytes: int) -> CheckResult:
    try:
        free = shutil.disk_usage(path).free
    except OSError as exc:
        log_warning(f"Disk space query failed for {path}, assuming sufficient: {exc}")
        return CheckResult(SUFFICIENT_DISK_SPACE, passed=True, detail="disk space unknown")
    free_mb = free // (1024 * 1024)
    if free > min_free_bytes:
        return CheckResult(SUFFICIENT_DISK_SPACE, passed=True, detail=f"{free_mb} MB free")
    return CheckResult(
        SUFFICIENT_DISK_SPACE,
        passed=False,
        detail=f"only {free_mb} MB free on {path}",
    )


class PrerequisiteValidator:
    """Build a PrerequisiteReport for a registration attempt."""

    def __init__(
        self,
        settings: NetBirdSettings,
        *,
        firewall: FirewallInspector | None = None,
        tcp_probe: TcpProbe = check_tcp,
        connect_timeout_s: float = 10.0,
    ) -> None:
        self._settings = settings
        self._firewall = firewall or FirewallInspector()
        self._tcp_probe = tcp_probe
        self._connect_timeout_s = connect_timeout_s

    def validate(self, setup_key: str, management_url: str | None = None) -> PrerequisiteReport:
        key_check = validate_setup_key(setup_key)
        if key_check.passed:
            reachable = self._check_management(management_url)
        else:
            # A malformed key never justifies network traffic.
            reachable = CheckResult(
                MANAGEMENT_REACHABLE, passed=False, evaluated=False, detail="skipped"
            )

        checks = (
            key_check,
            reachable,
            check_conflicting_state(self._settings.config_file, management_url),
            check_disk_space(self._settings.system_drive, self._settings.min_free_disk_bytes),
            self._firewall.check(),
        )
        report = PrerequisiteReport(checks=checks)
        self._log_report(report)
        return report

    def _check_management(self, management_url: str | None) -> CheckResult:
        host, port = management_endpoint(management_url, self._settings.management_port)
        result = self._tcp_probe(host, port, self._connect_timeout_s)
        return CheckResult(
            MANAGEMENT_REACHABLE,
            passed=result.passed,
            evaluated=result.evaluated,
            detail=result.detail,
        )

    @staticmethod
    def _log_report(report: PrerequisiteReport) -> None:
        for check in report.checks:
            critical = check.name in report.critical
            mark = "PASS" if check.passed else ("FAIL" if critical else "WARN")
            message = f"  [{mark}] {check.name}: {check.detail}"
            if check.passed:
                log_info(message, style="dim")
            else:
                log_warning(message)
        if report.is_valid:
            log_info("Registration prerequisites satisfied")
        else:
            names = ", ".join(check.name for check in report.critical_failures)
            log_warning(f"Critical prerequisites failed: {names}")
