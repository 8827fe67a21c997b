"""Wrappers around the NetBird client executable and host services."""

from client.cli import CommandResult, NetBirdCli, StatusSnapshot, parse_status_json
from client.firewall import FirewallInspector
from client.interfaces import ClientCommands, ServiceManager
from client.network import check_tcp
from client.service import ServiceController, ServiceState

__all__ = [
    "ClientCommands",
    "CommandResult",
    "FirewallInspector",
    "NetBirdCli",
    "ServiceController",
    "ServiceManager",
    "ServiceState",
    "StatusSnapshot",
    "check_tcp",
    "parse_status_json",
]
