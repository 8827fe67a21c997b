"""Diagnostics routines for the core subsystem."""

from __future__ import annotations

import importlib.util
import sys

from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe() -> DiagnosticResult:
    """Run a core probe to validate logging and locking readiness.

    Returns:
        Diagnostic result indicating core readiness.
    """

    name = "core"
    from core import logging as core_logging

    if core_logging.logger is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details="Core logger failed to initialize",
        )

    lock_module = "msvcrt" if sys.platform == "win32" else "fcntl"
    if importlib.util.find_spec(lock_module) is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"File locking unavailable ({lock_module} missing)",
        )

    rich_available = importlib.util.find_spec("rich") is not None
    details = "Rich logging enabled" if rich_available else "Rich logging not available (fallback)"
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=details,
    )
