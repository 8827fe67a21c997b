"""Diagnostics routines for the NetBird client collaborators."""

from __future__ import annotations

from pathlib import Path
import shutil
from typing import Callable

from client.service import ServiceController, ServiceState
from config.settings import NetBirdSettings
from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe_executable(
    settings: NetBirdSettings | None = None,
    which: Callable[[str], str | None] = shutil.which,
) -> DiagnosticResult:
    """Check that the NetBird executable can be located."""

    name = "client"
    if settings is None:
        from config import load_settings

        settings = load_settings()

    executable = settings.executable
    if Path(executable).is_file():
        return DiagnosticResult(name, DiagnosticStatus.PASS, f"Executable at {executable}")
    resolved = which(executable)
    if resolved:
        return DiagnosticResult(name, DiagnosticStatus.PASS, f"Executable on PATH at {resolved}")
    return DiagnosticResult(name, DiagnosticStatus.FAIL, f"Executable not found: {executable}")


def probe_service(service: ServiceController | None = None) -> DiagnosticResult:
    """Report the daemon service state; a stopped service is only a warning."""

    name = "service"
    if service is None:
        from config import load_settings

        service = ServiceController(load_settings().service_name)

    state = service.query()
    if state is ServiceState.RUNNING:
        return DiagnosticResult(name, DiagnosticStatus.PASS, f"{service.service_name} running")
    if state is ServiceState.NOT_FOUND:
        return DiagnosticResult(
            name, DiagnosticStatus.FAIL, f"{service.service_name} is not installed"
        )
    return DiagnosticResult(name, DiagnosticStatus.WARN, f"{service.service_name} is {state.value}")
