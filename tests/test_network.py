"""Tests for TCP reachability checks."""

from __future__ import annotations

import socket

from client.network import check_tcp


def test_check_tcp_reaches_listening_socket() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        port = server.getsockname()[1]

        result = check_tcp("127.0.0.1", port, timeout_s=2.0, name="ManagementReachable")

    assert result.passed is True
    assert result.name == "ManagementReachable"


def test_check_tcp_reports_refused_port() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]

    result = check_tcp("127.0.0.1", port, timeout_s=2.0)

    assert result.passed is False
    assert f"127.0.0.1:{port}" in result.detail
