"""Command-line entry point for NetBird enrollment."""

from __future__ import annotations

import argparse
import os
import sys

from client.cli import NetBirdCli
from client.service import ServiceController
from config import ConfigController
from config.settings import NetBirdSettings
from core.locking import LockUnavailableError, RunLock
from core.logging import enable_file_logging, log_error, log_info, logger, set_level
from core.models import FailureCategory, RegistrationResult
from storage.controller import StorageController


SETUP_KEY_ENV = "NETBIRD_SETUP_KEY"

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_DAEMON_NOT_READY = 2
EXIT_PREREQUISITES_FAILED = 3
EXIT_REGISTRATION_FAILED = 4
EXIT_LOCKED = 5

FAILURE_EXIT_CODES = {
    FailureCategory.DAEMON_NOT_READY: EXIT_DAEMON_NOT_READY,
    FailureCategory.PREREQUISITES_FAILED: EXIT_PREREQUISITES_FAILED,
    FailureCategory.REGISTRATION_FAILED: EXIT_REGISTRATION_FAILED,
    FailureCategory.LOCKED: EXIT_LOCKED,
}


def exit_code_for(result: RegistrationResult) -> int:
    """Map a registration result to a process exit code."""

    if result.succeeded:
        return EXIT_OK
    if result.failure is None:
        return EXIT_ERROR
    return FAILURE_EXIT_CODES.get(result.failure, EXIT_ERROR)


def positive_int(value: str) -> int:
    """argparse type accepting integers of at least 1."""

    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer value: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Raw command-line arguments.

    Returns:
        Parsed arguments namespace.
    """

    parser = argparse.ArgumentParser(
        prog="netbird-enroll",
        description="Register this machine with a NetBird management server.",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default from config).")
    parser.add_argument(
        "--no-file-log",
        action="store_true",
        help="Do not write a per-run log file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    register = subparsers.add_parser("register", help="Register the client with a setup key.")
    register.add_argument(
        "--setup-key",
        default=None,
        help=f"Setup key (falls back to ${SETUP_KEY_ENV}).",
    )
    register.add_argument("--management-url", default=None, help="Management server URL.")
    register.add_argument(
        "--max-retries", type=positive_int, default=None, help="Registration attempts (at least 1)."
    )
    register.add_argument(
        "--no-auto-recover",
        action="store_true",
        help="Do not restart the service when the daemon is not ready.",
    )
    register.add_argument(
        "--no-diagnostics-export",
        action="store_true",
        help="Skip writing the diagnostic bundle on failure.",
    )

    status = subparsers.add_parser("status", help="Show client status.")
    status.add_argument("--json", action="store_true", help="Print JSON status.")

    reset = subparsers.add_parser("reset", help="Reset local client state.")
    reset.add_argument(
        "--full",
        action="store_true",
        help="Clear the whole data directory instead of only the config file.",
    )

    diagnostics = subparsers.add_parser("diagnostics", help="Run diagnostics probes and exit.")
    diagnostics.add_argument(
        "--offline",
        action="store_true",
        help="Run probes against a temporary offline directory.",
    )
    return parser.parse_args(argv)


def run_register(args: argparse.Namespace, settings: NetBirdSettings) -> int:
    from diagnostics.export import collect_diagnostics, export_diagnostics
    from services.registration import RegistrationOrchestrator

    setup_key = args.setup_key or os.environ.get(SETUP_KEY_ENV, "")
    if not setup_key:
        log_error(f"No setup key given (use --setup-key or ${SETUP_KEY_ENV})")
        return EXIT_PREREQUISITES_FAILED

    if args.management_url:
        settings = settings.with_overrides(management_url=args.management_url)
    cli = NetBirdCli(settings)
    service = ServiceController(settings.service_name)
    orchestrator = RegistrationOrchestrator(
        settings,
        cli,
        service,
        lock=RunLock(settings.lock_file),
    )
    result = orchestrator.register(
        setup_key,
        management_url=settings.management_url,
        max_retries=args.max_retries,
        auto_recover=False if args.no_auto_recover else None,
    )

    if (
        not result.succeeded
        and result.failure is not FailureCategory.LOCKED
        and not args.no_diagnostics_export
    ):
        storage = StorageController.get_instance()
        payload = collect_diagnostics(
            settings,
            cli,
            service,
            recent_logs=storage.recent_log_files(),
            result=result,
        )
        export_diagnostics(storage.get_diagnostics_path(), payload)

    return exit_code_for(result)


def run_status(args: argparse.Namespace, settings: NetBirdSettings) -> int:
    cli = NetBirdCli(settings)
    result = cli.status_json() if args.json else cli.status_detail()
    print(result.output)
    return result.returncode if result.returncode >= 0 else EXIT_ERROR


def run_reset(args: argparse.Namespace, settings: NetBirdSettings) -> int:
    from services.reset import full_reset, partial_reset

    service = ServiceController(settings.service_name)
    try:
        with RunLock(settings.lock_file):
            if args.full:
                completed = full_reset(service, settings.data_dir)
            else:
                completed = partial_reset(service, settings.config_file)
    except LockUnavailableError as exc:
        log_error(str(exc))
        return EXIT_LOCKED
    return EXIT_OK if completed else EXIT_ERROR


def main(argv: list[str] | None = None) -> int:
    """Application entry point.

    Args:
        argv: Optional list of command-line arguments.

    Returns:
        Process exit code.
    """

    if argv is None:
        argv = sys.argv[1:]

    args = parse_args(argv)
    if args.command == "diagnostics":
        from diagnostics.run import run as run_diagnostics

        return run_diagnostics(offline=args.offline)

    config = ConfigController.get_instance().get_config()
    set_level(args.log_level or str(config.get("logging_level", "INFO")))
    settings = NetBirdSettings.from_config(config)

    if not args.no_file_log and config.get("file_logging_enabled", True):
        log_file_path = StorageController.get_instance().get_log_file_path()
        enable_file_logging(log_file_path)
        log_info(f"Writing logs to {log_file_path}")

    handlers = {
        "register": run_register,
        "status": run_status,
        "reset": run_reset,
    }
    try:
        return handlers[args.command](args, settings)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
