"""Narrow interfaces the registration services depend on."""

from __future__ import annotations

from typing import Protocol

from client.cli import CommandResult


class ClientCommands(Protocol):
    """Subset of the NetBird CLI used by readiness and registration."""

    def status(self) -> CommandResult:
        """Run ``status``."""

    def status_detail(self) -> CommandResult:
        """Run ``status --detail``."""

    def up(self, setup_key: str, management_url: str | None = None) -> CommandResult:
        """Run ``up --setup-key``."""


class ServiceManager(Protocol):
    """Subset of the service controller used by readiness and recovery."""

    service_name: str

    def is_running(self) -> bool:
        """Return True when the service reports running."""

    def start(self, wait_s: float | None = None) -> bool:
        """Start the service and wait for it to run."""

    def stop(self, wait_s: float | None = None) -> bool:
        """Stop the service and wait for it to stop."""

    def restart(self) -> bool:
        """Stop then start the service."""
