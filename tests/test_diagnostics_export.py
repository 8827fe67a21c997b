"""Tests for the diagnostic bundle written after failed runs."""

from __future__ import annotations

import json
from pathlib import Path

from client.cli import CommandResult, StatusSnapshot
from client.service import ServiceState
from config.settings import NetBirdSettings
from core.models import (
    ErrorKind,
    FailureCategory,
    RecoveryAction,
    RecoveryKind,
    RegistrationAttempt,
    RegistrationResult,
    RegistrationState,
    Transition,
)
from diagnostics.export import collect_diagnostics, export_diagnostics


class _FakeCli:
    def status_detail(self) -> CommandResult:
        return CommandResult(args=("netbird", "status", "--detail"), returncode=1, stdout="NeedsLogin")

    def snapshot(self) -> StatusSnapshot:
        return StatusSnapshot(management_connected=False, signal_connected=False)

    def version(self) -> str:
        return "0.28.4"


class _FakeService:
    service_name = "netbird"

    def query(self) -> ServiceState:
        return ServiceState.RUNNING


def _result() -> RegistrationResult:
    return RegistrationResult(
        state=RegistrationState.FAILED,
        failure=FailureCategory.REGISTRATION_FAILED,
        attempts=(
            RegistrationAttempt(
                number=1,
                succeeded=False,
                error_kind=ErrorKind.INVALID_SETUP_KEY,
                recovery=RecoveryAction(RecoveryKind.NONE, "stop"),
            ),
        ),
        transitions=(Transition(RegistrationState.INIT), Transition(RegistrationState.FAILED)),
        message="InvalidSetupKey: stop",
    )


def test_collect_diagnostics(tmp_path: Path) -> None:
    settings = NetBirdSettings.defaults().with_overrides(
        data_dir=tmp_path, config_file=tmp_path / "config.json"
    )

    payload = collect_diagnostics(
        settings,
        _FakeCli(),
        _FakeService(),
        recent_logs=[tmp_path / "run_1.log"],
        result=_result(),
    )

    assert payload["service_status"] == "running"
    assert payload["installed_version"] == "0.28.4"
    assert payload["config_exists"] is False
    assert payload["last_status_exit_code"] == 1
    assert payload["last_status_output"] == "NeedsLogin"
    assert payload["status"]["management_connected"] is False
    assert payload["recent_logs"] == [str(tmp_path / "run_1.log")]
    registration = payload["registration"]
    assert registration["failure"] == "registration_failed"
    assert registration["attempts"][0]["error_kind"] == "InvalidSetupKey"
    assert registration["attempts"][0]["recovery"] == "None"
    assert registration["readiness"] is None


def test_export_diagnostics_writes_json(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "diagnostics_run_3.json"

    written = export_diagnostics(path, {"service_status": "running", "path": tmp_path})

    assert written == path
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["service_status"] == "running"
    assert data["path"] == str(tmp_path)


def test_export_diagnostics_reports_unwritable_path(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")

    assert export_diagnostics(blocker / "diagnostics.json", {}) is None
