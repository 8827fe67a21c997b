"""Command-line entry point for running diagnostics."""

from __future__ import annotations

import argparse
from pathlib import Path
import tempfile

from client.diagnostics import probe_executable, probe_service
from client.service import ServiceController, ServiceState
from config.diagnostics import probe as config_probe
from config.settings import NetBirdSettings
from core.diagnostics import probe as core_probe
from diagnostics.runner import Probe, format_results, has_failures, run_diagnostics
from storage.diagnostics import probe as storage_probe


class _OfflineService(ServiceController):
    """Service controller that always reports a running service."""

    def query(self) -> ServiceState:
        return ServiceState.RUNNING


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""

    parser = argparse.ArgumentParser(description="Run diagnostics probes.")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Run probes against a temporary offline directory.",
    )
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=None,
        help="Optional base directory for offline diagnostics.",
    )
    return parser.parse_args(argv)


def offline_probes(base_dir: Path) -> list[Probe]:
    """Probes that touch only ``base_dir`` and fakes."""

    config_dir = base_dir / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    default_config = config_dir / "default.yaml"
    if not default_config.exists():
        default_config.write_text("{}", encoding="utf-8")

    executable = base_dir / "netbird"
    executable.write_text("# offline", encoding="utf-8")
    settings = NetBirdSettings.defaults().with_overrides(executable=str(executable))

    def config_probe_offline():
        return config_probe(base_dir=base_dir)

    def client_probe_offline():
        return probe_executable(settings)

    def service_probe_offline():
        return probe_service(_OfflineService(settings.service_name))

    def storage_probe_offline():
        return storage_probe(base_dir=base_dir)

    return [
        config_probe_offline,
        core_probe,
        client_probe_offline,
        service_probe_offline,
        storage_probe_offline,
    ]


def live_probes(base_dir: Path | None = None) -> list[Probe]:
    """Probes against the real configuration, client and service."""

    def config_probe_with_base():
        return config_probe(base_dir=base_dir)

    def storage_probe_with_base():
        return storage_probe(base_dir=base_dir)

    return [
        config_probe_with_base,
        core_probe,
        probe_executable,
        probe_service,
        storage_probe_with_base,
    ]


def run(offline: bool = False, base_dir: Path | None = None) -> int:
    """Run diagnostics, print the report and return an exit code."""

    if offline and base_dir is None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            results = run_diagnostics(offline_probes(Path(tmp_dir)))
    elif offline:
        results = run_diagnostics(offline_probes(base_dir))
    else:
        results = run_diagnostics(live_probes(base_dir))

    print(format_results(results))
    return 1 if has_failures(results) else 0


def main(argv: list[str] | None = None) -> int:
    """Run diagnostics and return an exit code."""

    args = parse_args(argv)
    return run(offline=args.offline, base_dir=args.base_dir)


if __name__ == "__main__":
    raise SystemExit(main())
