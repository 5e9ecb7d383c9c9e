from __future__ import annotations

"""Engine settings loaded from `<home>/config.yaml` with environment overrides."""

import json
import os
from dataclasses import dataclass
from datetime import UTC, date, datetime, tzinfo
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from jsonschema import Draft202012Validator


DEFAULT_TIMEZONE = "UTC"
DEFAULT_TELEMETRY_RETENTION_DAYS = 30


def _schema_path() -> Path:
    return Path(__file__).resolve().parent / "schema" / "config.schema.json"


def _load_schema() -> dict[str, Any]:
    path = _schema_path()
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValueError(f"Settings schema is not readable JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Settings schema must be a JSON object: {path}")
    return payload


def _env_days(name: str, fallback: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    try:
        value = int(raw)
    except ValueError:
        return fallback
    if value <= 0:
        return fallback
    return value


def _resolve_zone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone in settings: {name}") from exc


@dataclass(frozen=True)
class EngineSettings:
    """Resolved settings; `today()` is the calendar day every day-gap rule uses."""

    timezone: str = DEFAULT_TIMEZONE
    telemetry_enabled: bool = True
    telemetry_retention_days: int = DEFAULT_TELEMETRY_RETENTION_DAYS

    @property
    def zone(self) -> tzinfo:
        return _resolve_zone(self.timezone)

    def today(self) -> date:
        return datetime.now(tz=self.zone).date()

    def to_dict(self) -> dict[str, Any]:
        return {
            "timezone": self.timezone,
            "telemetry": {
                "enabled": self.telemetry_enabled,
                "retention_days": self.telemetry_retention_days,
            },
        }


def load_settings(home: Path) -> EngineSettings:
    """Read and validate `config.yaml` under `home`; a missing file means defaults."""

    path = home / "config.yaml"
    payload: Any = {}
    if path.exists():
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        if payload is None:
            payload = {}
    if not isinstance(payload, dict):
        raise ValueError(f"Settings file must be a mapping: {path}")

    validator = Draft202012Validator(_load_schema())
    errors = sorted(validator.iter_errors(payload), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        where = ".".join(str(part) for part in first.path) or "<root>"
        raise ValueError(f"Settings validation failed for {path} at {where}: {first.message}")

    telemetry = payload.get("telemetry", {})
    timezone = os.environ.get("ARCANE_TIMEZONE", "").strip() or payload.get("timezone", DEFAULT_TIMEZONE)
    retention = _env_days(
        "ARCANE_TELEMETRY_RETENTION_DAYS",
        int(telemetry.get("retention_days", DEFAULT_TELEMETRY_RETENTION_DAYS)),
    )
    settings = EngineSettings(
        timezone=timezone,
        telemetry_enabled=bool(telemetry.get("enabled", True)),
        telemetry_retention_days=retention,
    )
    # Fail at startup rather than on the first day computation.
    _resolve_zone(settings.timezone)
    return settings
