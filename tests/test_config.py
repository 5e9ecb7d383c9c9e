from __future__ import annotations

from datetime import UTC
from pathlib import Path

import pytest

from arcane_engine.config import EngineSettings, load_settings


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text.strip() + "\n", encoding="utf-8")


def test_missing_config_uses_defaults(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.delenv("ARCANE_TIMEZONE", raising=False)
    monkeypatch.delenv("ARCANE_TELEMETRY_RETENTION_DAYS", raising=False)
    settings = load_settings(tmp_path)
    assert settings == EngineSettings()
    assert settings.zone is UTC


def test_config_file_values(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.delenv("ARCANE_TIMEZONE", raising=False)
    monkeypatch.delenv("ARCANE_TELEMETRY_RETENTION_DAYS", raising=False)
    _write(
        tmp_path / "config.yaml",
        """
timezone: UTC
telemetry:
  enabled: false
  retention_days: 7
""",
    )
    settings = load_settings(tmp_path)
    assert settings.telemetry_enabled is False
    assert settings.telemetry_retention_days == 7
    assert settings.to_dict()["telemetry"] == {"enabled": False, "retention_days": 7}


def test_env_overrides_retention(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _write(tmp_path / "config.yaml", "telemetry:\n  retention_days: 7")
    monkeypatch.setenv("ARCANE_TELEMETRY_RETENTION_DAYS", "90")
    assert load_settings(tmp_path).telemetry_retention_days == 90
    monkeypatch.setenv("ARCANE_TELEMETRY_RETENTION_DAYS", "-3")
    assert load_settings(tmp_path).telemetry_retention_days == 7


def test_schema_rejects_unknown_keys_and_bad_values(tmp_path: Path) -> None:
    _write(tmp_path / "config.yaml", "colour: blue")
    with pytest.raises(ValueError, match="validation failed"):
        load_settings(tmp_path)
    _write(tmp_path / "config.yaml", "telemetry:\n  retention_days: 0")
    with pytest.raises(ValueError, match="telemetry.retention_days"):
        load_settings(tmp_path)


def test_unknown_timezone_fails_at_load(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("ARCANE_TIMEZONE", "Nowhere/Atlantis")
    with pytest.raises(ValueError, match="Unknown timezone"):
        load_settings(tmp_path)


def test_non_mapping_config(tmp_path: Path) -> None:
    _write(tmp_path / "config.yaml", "- just\n- a list")
    with pytest.raises(ValueError, match="mapping"):
        load_settings(tmp_path)
