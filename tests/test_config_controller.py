"""Tests for config loading, legacy key normalization and settings."""

from __future__ import annotations

from pathlib import Path

from config import load_settings
from config.controller import CONFIG_DIR_ENV, ConfigController
from config.settings import DEFAULT_MANAGEMENT_URL, NetBirdSettings


def _reset_singletons() -> None:
    ConfigController._instance = None


def _write_config(tmp_path: Path, lines: list[str]) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "default.yaml").write_text("\n".join(lines), encoding="utf-8")
    return config_dir


def test_config_controller_maps_legacy_keys(tmp_path: Path, monkeypatch) -> None:
    _write_config(
        tmp_path,
        [
            "netbird_exe: /opt/netbird/bin/netbird",
            "service_name: netbird-test",
            "netbird_data_dir: /var/lib/netbird",
            "management_url: https://netbird.example.com:443",
            "max_retries: 5",
            "auto_recover: false",
        ],
    )
    monkeypatch.delenv(CONFIG_DIR_ENV, raising=False)
    monkeypatch.chdir(tmp_path)
    _reset_singletons()

    config = ConfigController.get_instance().get_config()

    assert config["netbird"]["executable"] == "/opt/netbird/bin/netbird"
    assert config["netbird"]["service_name"] == "netbird-test"
    assert config["netbird"]["data_dir"] == "/var/lib/netbird"
    assert config["netbird"]["management_url"] == "https://netbird.example.com:443"
    assert config["registration"]["max_retries"] == 5
    assert config["registration"]["auto_recover"] is False


def test_nested_values_win_over_legacy_keys(tmp_path: Path, monkeypatch) -> None:
    _write_config(
        tmp_path,
        [
            "max_retries: 9",
            "registration:",
            "  max_retries: 2",
        ],
    )
    monkeypatch.delenv(CONFIG_DIR_ENV, raising=False)
    monkeypatch.chdir(tmp_path)
    _reset_singletons()

    assert ConfigController.get_instance().get_config()["registration"]["max_retries"] == 2


def test_override_file_is_merged_and_archived(tmp_path: Path, monkeypatch) -> None:
    config_dir = _write_config(
        tmp_path,
        [
            "registration:",
            "  max_retries: 3",
            "  verify_timeout_s: 60",
        ],
    )
    (config_dir / "override.yaml").write_text("registration:\n  max_retries: 4\n", encoding="utf-8")
    monkeypatch.setenv(CONFIG_DIR_ENV, str(config_dir))
    _reset_singletons()

    controller = ConfigController.get_instance()
    config = controller.get_config()
    assert config["registration"] == {"max_retries": 4, "verify_timeout_s": 60}

    controller.set_config(config)
    assert (config_dir / "override_0001.yaml").exists()
    assert (config_dir / "override.yaml").exists()


def test_settings_from_config(tmp_path: Path) -> None:
    settings = NetBirdSettings.from_config(
        {
            "netbird": {
                "executable": "/usr/bin/netbird",
                "service_name": "netbird",
                "data_dir": str(tmp_path),
                "management_url": "https://netbird.example.com:33073",
            },
            "registration": {
                "max_retries": 4,
                "auto_recover": False,
                "min_free_disk_mb": 1,
                "lock_file": str(tmp_path / "run.lock"),
            },
            "storage": {"var_dir": str(tmp_path / "var"), "log_dir": str(tmp_path / "log")},
        }
    )

    assert settings.executable == "/usr/bin/netbird"
    assert settings.config_file == tmp_path / "config.json"
    assert settings.management_url == "https://netbird.example.com:33073"
    assert settings.max_retries == 4
    assert settings.auto_recover is False
    assert settings.min_free_disk_bytes == 1024 * 1024
    assert settings.lock_file == tmp_path / "run.lock"
    assert settings.var_dir == tmp_path / "var"
    assert settings.log_dir == tmp_path / "log"
    assert settings.diagnostics_dir == tmp_path / "log" / "diagnostics"


def test_settings_defaults() -> None:
    settings = NetBirdSettings.defaults()

    assert settings.management_url == DEFAULT_MANAGEMENT_URL
    assert settings.max_retries == 3
    assert settings.auto_recover is True
    assert settings.config_file == settings.data_dir / "config.json"
    assert settings.with_overrides(max_retries=7).max_retries == 7
    assert settings.max_retries == 3


def test_load_settings_uses_config_controller(tmp_path: Path, monkeypatch) -> None:
    _write_config(tmp_path, ["registration:", "  readiness_timeout_s: 30"])
    monkeypatch.delenv(CONFIG_DIR_ENV, raising=False)
    monkeypatch.chdir(tmp_path)
    _reset_singletons()

    assert load_settings().readiness_timeout_s == 30.0
