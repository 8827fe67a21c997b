"""Diagnostics routines for the storage subsystem."""

from __future__ import annotations

from pathlib import Path

from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe(base_dir: Path | None = None) -> DiagnosticResult:
    """Run a storage probe to validate log and state directory access.

    Args:
        base_dir: Optional base directory for offline testing.

    Returns:
        Diagnostic result indicating storage readiness.
    """

    name = "storage"
    try:
        if base_dir is None:
            from config import load_settings

            settings = load_settings()
            var_dir = settings.var_dir
            log_dir = settings.log_dir
        else:
            var_dir = base_dir / "var"
            log_dir = base_dir / "log"

        var_dir.mkdir(parents=True, exist_ok=True)
        log_dir.mkdir(parents=True, exist_ok=True)

        for directory in (var_dir, log_dir):
            sentinel = directory / "diagnostics_probe.txt"
            sentinel.write_text("ok", encoding="utf-8")
            sentinel.unlink(missing_ok=True)

        details = f"Storage directories writable at {log_dir}"
        return DiagnosticResult(name=name, status=DiagnosticStatus.PASS, details=details)
    except OSError as exc:
        details = f"Filesystem access failed: {exc}"
        return DiagnosticResult(name=name, status=DiagnosticStatus.FAIL, details=details)
