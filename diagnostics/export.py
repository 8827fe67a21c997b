"""JSON diagnostic bundle written when a registration run fails."""

from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path
import socket
from typing import Any, Iterable

from client.cli import NetBirdCli
from client.service import ServiceController
from config.settings import NetBirdSettings
from core.logging import get_file_log_path, log_info, log_warning
from core.models import RegistrationResult


def _summarize_result(result: RegistrationResult) -> dict[str, Any]:
    return {
        "state": result.state.value,
        "failure": result.failure.value if result.failure else None,
        "message": result.message,
        "attempts": [
            {
                "number": attempt.number,
                "succeeded": attempt.succeeded,
                "error_kind": attempt.error_kind.value if attempt.error_kind else None,
                "recovery": attempt.recovery.kind.value if attempt.recovery else None,
            }
            for attempt in result.attempts
        ],
        "transitions": [
            {"state": item.state.value, "attempt": item.attempt, "note": item.note}
            for item in result.transitions
        ],
        "readiness": (
            {
                check.name: check.passed
                for check in result.readiness.report.checks
            }
            if result.readiness
            else None
        ),
        "prerequisites": (
            {check.name: check.passed for check in result.prerequisites.checks}
            if result.prerequisites
            else None
        ),
    }


def collect_diagnostics(
    settings: NetBirdSettings,
    cli: NetBirdCli,
    service: ServiceController,
    *,
    recent_logs: Iterable[Path] = (),
    result: RegistrationResult | None = None,
) -> dict[str, Any]:
    """Gather a snapshot of client and service state."""

    status = cli.status_detail()
    snapshot = cli.snapshot()
    log_file = get_file_log_path()
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "machine_name": socket.gethostname(),
        "service_name": settings.service_name,
        "service_status": service.query().value,
        "installed_version": cli.version(),
        "config_file": str(settings.config_file),
        "config_exists": settings.config_file.exists(),
        "log_file": str(log_file) if log_file else None,
        "recent_logs": [str(path) for path in recent_logs],
        "last_status_exit_code": status.returncode,
        "last_status_output": status.output,
        "status": snapshot.to_dict() if snapshot else None,
    }
    if result is not None:
        payload["registration"] = _summarize_result(result)
    return payload


def export_diagnostics(path: Path, payload: dict[str, Any]) -> Path | None:
    """Write the diagnostic payload as JSON; return None if it cannot be written."""

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    except OSError as exc:
        log_warning(f"Could not write diagnostics to {path}: {exc}")
        return None
    log_info(f"Diagnostics exported to {path}")
    return path
