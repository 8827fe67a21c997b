"""Windows Firewall posture inspection."""

from __future__ import annotations

import json
import subprocess
import sys
from typing import Any, Callable

from core.logging import log_warning
from core.models import CheckResult


_PROFILES_SCRIPT = (
    "Get-NetFirewallProfile | Select-Object Name,"
    "@{n='Enabled';e={$_.Enabled.ToString()}},"
    "@{n='DefaultOutboundAction';e={$_.DefaultOutboundAction.ToString()}} "
    "| ConvertTo-Json -Compress"
)
_HTTPS_RULES_SCRIPT = (
    "(Get-NetFirewallRule -Direction Outbound -Action Allow -Enabled True "
    "| Get-NetFirewallPortFilter "
    "| Where-Object { $_.RemotePort -contains '443' } | Measure-Object).Count"
)
_CLIENT_RULES_SCRIPT = "(Get-NetFirewallRule -DisplayName '*{name}*' | Measure-Object).Count"


class FirewallQueryError(RuntimeError):
    """Raised internally when a firewall query cannot be completed."""


def _as_list(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, dict):
        return [payload]
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    return []


class FirewallInspector:
    """Decide whether outbound HTTPS is likely permitted.

    Any query failure yields a passing result: firewall posture is advisory.
    """

    name = "FirewallOk"

    def __init__(
        self,
        client_rule_name: str = "NetBird",
        *,
        runner: Callable[..., "subprocess.CompletedProcess[str]"] = subprocess.run,
        windows: bool | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        self._client_rule_name = client_rule_name
        self._runner = runner
        self._windows = sys.platform == "win32" if windows is None else windows
        self._timeout_s = timeout_s

    def check(self) -> CheckResult:
        if not self._windows:
            return CheckResult(self.name, passed=True, detail="Firewall check not applicable")
        try:
            return self._evaluate()
        except (FirewallQueryError, OSError, subprocess.TimeoutExpired, ValueError) as exc:
            log_warning(f"Firewall check could not complete, assuming allowed: {exc}")
            return CheckResult(self.name, passed=True, detail=f"Firewall check skipped ({exc})")

    def _evaluate(self) -> CheckResult:
        profiles = _as_list(json.loads(self._powershell(_PROFILES_SCRIPT) or "[]"))
        enabled = [
            profile for profile in profiles if str(profile.get("Enabled", "")).lower() == "true"
        ]
        if not enabled:
            return CheckResult(self.name, passed=True, detail="No firewall profile enabled")

        if self._count(_HTTPS_RULES_SCRIPT) > 0:
            return CheckResult(self.name, passed=True, detail="Outbound HTTPS allow rule present")
        client_script = _CLIENT_RULES_SCRIPT.replace("{name}", self._client_rule_name)
        if self._count(client_script) > 0:
            return CheckResult(self.name, passed=True, detail="Client firewall rule present")

        blocking = [
            str(profile.get("Name", "?"))
            for profile in enabled
            if str(profile.get("DefaultOutboundAction", "")).lower() == "block"
        ]
        if not blocking:
            return CheckResult(self.name, passed=True, detail="Default outbound action is Allow")
        return CheckResult(
            self.name,
            passed=False,
            detail=f"Outbound traffic blocked by default on: {', '.join(blocking)}",
        )

    def _count(self, script: str) -> int:
        text = self._powershell(script).strip()
        return int(text) if text else 0

    def _powershell(self, script: str) -> str:
        completed = self._runner(
            ["powershell", "-NoProfile", "-NonInteractive", "-Command", script],
            capture_output=True,
            text=True,
            timeout=self._timeout_s,
        )
        if completed.returncode != 0:
            raise FirewallQueryError((completed.stderr or "").strip() or f"exit {completed.returncode}")
        return completed.stdout or ""
