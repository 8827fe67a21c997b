"""Diagnostics helpers for netbird-enroll."""

from diagnostics.models import DiagnosticResult, DiagnosticStatus
from diagnostics.runner import format_results, has_failures, run_diagnostics

__all__ = [
    "DiagnosticResult",
    "DiagnosticStatus",
    "format_results",
    "has_failures",
    "run_diagnostics",
]
