"""Thin wrapper over the NetBird command-line client."""

from __future__ import annotations

from dataclasses import dataclass
import json
import subprocess
from typing import Any, Callable, Sequence

from config.settings import NetBirdSettings
from core.logging import SOURCE_NETBIRD, log_debug, log_warning, mask_secret


Runner = Callable[..., "subprocess.CompletedProcess[str]"]


@dataclass(frozen=True)
class CommandResult:
    """Captured result of one CLI invocation.

    ``returncode`` is -1 when the process could not be run at all; ``error``
    then explains why.
    """

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def daemon_reachable(self) -> bool:
        """Exit 0 (connected) and 1 (not connected) both mean the daemon answered."""

        return self.returncode in (0, 1)

    @property
    def output(self) -> str:
        parts = [part for part in (self.stdout, self.stderr, self.error) if part]
        return "\n".join(parts)


@dataclass(frozen=True)
class StatusSnapshot:
    """Typed view of ``status --json`` output."""

    management_connected: bool
    signal_connected: bool
    netbird_ip: str = ""
    peers_total: int = 0
    peers_connected: int = 0
    management_url: str = ""
    daemon_version: str = ""
    cli_version: str = ""
    fqdn: str = ""

    @property
    def connected(self) -> bool:
        return self.management_connected and self.signal_connected and bool(self.netbird_ip)

    def to_dict(self) -> dict[str, Any]:
        return {
            "management_connected": self.management_connected,
            "signal_connected": self.signal_connected,
            "netbird_ip": self.netbird_ip,
            "peers_total": self.peers_total,
            "peers_connected": self.peers_connected,
            "management_url": self.management_url,
            "daemon_version": self.daemon_version,
            "cli_version": self.cli_version,
            "fqdn": self.fqdn,
        }


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_status_json(text: str) -> StatusSnapshot | None:
    """Parse ``status --json`` output; return None when it is not usable JSON."""

    try:
        payload = json.loads(text)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None

    management = payload.get("management") or {}
    signal = payload.get("signal") or {}
    peers = payload.get("peers") or {}
    if not isinstance(management, dict):
        management = {}
    if not isinstance(signal, dict):
        signal = {}
    if not isinstance(peers, dict):
        peers = {}

    return StatusSnapshot(
        management_connected=bool(management.get("connected")),
        signal_connected=bool(signal.get("connected")),
        netbird_ip=str(payload.get("netbirdIp") or ""),
        peers_total=_as_int(peers.get("total")),
        peers_connected=_as_int(peers.get("connected")),
        management_url=str(management.get("url") or ""),
        daemon_version=str(payload.get("daemonVersion") or ""),
        cli_version=str(payload.get("cliVersion") or ""),
        fqdn=str(payload.get("fqdn") or ""),
    )


class NetBirdCli:
    """Runs ``netbird`` subcommands and captures their output."""

    def __init__(self, settings: NetBirdSettings, runner: Runner = subprocess.run) -> None:
        self._settings = settings
        self._runner = runner

    @property
    def executable(self) -> str:
        return self._settings.executable

    def status(self) -> CommandResult:
        return self._run(["status"])

    def status_detail(self) -> CommandResult:
        return self._run(["status", "--detail"])

    def status_json(self) -> CommandResult:
        return self._run(["status", "--json"])

    def snapshot(self) -> StatusSnapshot | None:
        result = self.status_json()
        if not result.daemon_reachable:
            return None
        return parse_status_json(result.stdout)

    def version(self) -> str | None:
        result = self._run(["version"])
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def up(self, setup_key: str, management_url: str | None = None) -> CommandResult:
        args = ["up", "--setup-key", setup_key]
        if management_url:
            args.extend(["--management-url", management_url])
        return self._run(args, secret=setup_key, timeout_s=max(self._settings.command_timeout_s, 120.0))

    def _run(
        self,
        args: Sequence[str],
        *,
        secret: str | None = None,
        timeout_s: float | None = None,
    ) -> CommandResult:
        command = [self._settings.executable, *args]
        display = tuple(mask_secret(part) if secret and part == secret else part for part in command)
        timeout = timeout_s if timeout_s is not None else self._settings.command_timeout_s
        log_debug(f"Running {' '.join(display)}", source=SOURCE_NETBIRD)
        try:
            completed = self._runner(
                command,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            log_warning(f"Command timed out after {timeout:.0f}s: {' '.join(display)}", SOURCE_NETBIRD)
            return CommandResult(args=display, returncode=-1, error=f"timed out after {timeout:.0f}s")
        except OSError as exc:
            log_warning(f"Command could not be started: {' '.join(display)} ({exc})", SOURCE_NETBIRD)
            return CommandResult(args=display, returncode=-1, error=str(exc))

        return CommandResult(
            args=display,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
