"""Network reachability helpers."""

from __future__ import annotations

import socket
import time

from core.models import CheckResult


def check_tcp(host: str, port: int = 443, timeout_s: float = 5.0, name: str = "tcp") -> CheckResult:
    """Open and close a TCP connection to ``host:port``."""

    start = time.monotonic()
    try:
        with socket.create_connection((host, port), timeout=timeout_s):
            latency_ms = int((time.monotonic() - start) * 1000)
            return CheckResult(
                name=name,
                passed=True,
                detail=f"{host}:{port} reachable in {latency_ms}ms",
            )
    except OSError as exc:
        return CheckResult(
            name=name,
            passed=False,
            detail=f"{host}:{port} unreachable ({exc})",
        )
