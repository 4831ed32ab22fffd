from __future__ import annotations

from pathlib import Path

import pytest

from telemctl.core.errors import SettingsError
from telemctl.core.settings import DEFAULT_MAX_BUFFER_BYTES, Settings, load_settings, settings_path
from telemctl.transports.base import ReconnectPolicy


def _write_settings(root: Path, content: str) -> None:
    path = root / "telemctl" / "settings.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def test_defaults_without_settings_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    assert settings_path() == tmp_path / "cfg" / "telemctl" / "settings.yaml"
    settings = load_settings()
    assert settings == Settings()
    assert settings.max_buffer_bytes == DEFAULT_MAX_BUFFER_BYTES


def test_user_settings_override_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    _write_settings(tmp_path / "cfg", "max_buffer_bytes: 4096\nreconnect_initial_s: 0.25\n")

    settings = load_settings()
    assert settings.max_buffer_bytes == 4096
    assert settings.reconnect_initial_s == 0.25
    assert settings.read_chunk_size == Settings().read_chunk_size


def test_unknown_setting_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    _write_settings(tmp_path / "cfg", "max_bufer_bytes: 10\n")

    with pytest.raises(SettingsError, match="max_bufer_bytes"):
        load_settings()


def test_reconnect_bounds_checked(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("reconnect_initial_s: 5\nreconnect_max_s: 1\n", encoding="utf-8")

    with pytest.raises(SettingsError, match="reconnect_max_s"):
        load_settings(path)


def test_reconnect_policy_backs_off_to_cap() -> None:
    delays = ReconnectPolicy(initial_delay_s=0.5, factor=2.0, max_delay_s=3.0).delays()
    assert [next(delays) for _ in range(5)] == [0.5, 1.0, 2.0, 3.0, 3.0]


def test_script_step_limit_must_be_positive(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("script_step_limit: 0\n", encoding="utf-8")

    with pytest.raises(SettingsError, match="script_step_limit"):
        load_settings(path)
    path.write_text("script_step_limit: 5000\n", encoding="utf-8")
    assert load_settings(path).script_step_limit == 5000
