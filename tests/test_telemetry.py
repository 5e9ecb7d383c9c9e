from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from arcane_engine.telemetry import TelemetryLogger, parse_range, sanitize_event_data


def _read_jsonl(path: Path) -> list[dict]:
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def test_sanitize_redacts_secret_like_values() -> None:
    payload = {
        "token": "sk-abcdefghijklmnop",
        "nested": {"email": "user@example.com", "note": "a" * 250},
        "quest_id": "0b8f6f3e-1c2d-4e5f-8a9b-0c1d2e3f4a5b",
    }
    sanitized, stats = sanitize_event_data(payload)
    assert sanitized["token"] == "[redacted]"
    assert sanitized["nested"]["email"] == "[redacted]"
    assert sanitized["nested"]["note"].endswith("...[truncated]")
    assert sanitized["quest_id"] == payload["quest_id"]
    assert stats.redacted_fields == 2
    assert stats.truncated_fields == 1


def test_logger_appends_events_and_flags_sanitized_payloads(tmp_path: Path) -> None:
    events_path = tmp_path / "telemetry" / "events.jsonl"
    logger = TelemetryLogger(events_path)
    logger.log_event("quest.created", source="cli", user_id="u1", trace_id="cli:t1", data={"xp": 30})
    logger.log_event("quest.updated", source="api", user_id="u1", data={"note": "password=hunter2"})

    rows = _read_jsonl(events_path)
    assert [row["event_type"] for row in rows] == ["quest.created", "quest.updated", "risk.flagged"]
    assert rows[0]["schema_version"] == "0.1"
    assert rows[0]["trace_id"] == "cli:t1"
    assert set(rows[0]["build"]) == {"engine_version", "python_version", "platform"}
    assert rows[1]["data"]["note"] == "[redacted]"
    assert rows[2]["data"]["reason"] == "telemetry_sanitized"
    assert rows[2]["data"]["trigger_event_type"] == "quest.updated"


def test_unknown_event_type_and_source_are_coerced(tmp_path: Path) -> None:
    events_path = tmp_path / "events.jsonl"
    logger = TelemetryLogger(events_path)
    logger.log_event("made.up", source="satellite", data={"x": 1})
    row = _read_jsonl(events_path)[0]
    assert row["event_type"] == "risk.flagged"
    assert row["data"]["reason"] == "invalid_event_type"
    assert row["source"] == "engine"


def test_disabled_logger_writes_nothing(tmp_path: Path) -> None:
    events_path = tmp_path / "events.jsonl"
    logger = TelemetryLogger(events_path, enabled=False)
    logger.log_event("engine.started", source="engine", data={})
    assert not events_path.exists()
    assert logger.count_events() == 0


def test_export_summary_counts_completions(tmp_path: Path) -> None:
    events_path = tmp_path / "events.jsonl"
    logger = TelemetryLogger(events_path)
    logger.log_event(
        "quest.completed",
        source="cli",
        user_id="u1",
        data={"priority": "high", "xp_awarded": 50, "blocked": False, "level_up": True},
    )
    logger.log_event(
        "quest.completed",
        source="api",
        user_id="u1",
        data={"priority": "low", "xp_awarded": 0, "blocked": True, "level_up": False},
    )
    logger.log_event("penalty.applied", source="cli", user_id="u1", data={"missed_days": 1})
    logger.log_event("quest.completed", source="cli", user_id="u2", data={"priority": "medium", "xp_awarded": 30})

    out_path = tmp_path / "exports" / "summary.json"
    summary = logger.export_summary(range_value="7d", user_id="u1", out_path=out_path)
    assert summary["events_considered"] == 3
    assert summary["completions_total"] == 2
    assert summary["completions_blocked"] == 1
    assert summary["completions_by_source"] == {"api": 1, "cli": 1}
    assert summary["completions_by_priority"] == {"high": 1, "low": 1}
    assert summary["xp_awarded_total"] == 50
    assert summary["level_ups"] == 1
    assert summary["penalties_applied"] == 1
    assert json.loads(out_path.read_text(encoding="utf-8"))["completions_total"] == 2


def test_purge_keeps_recent_events(tmp_path: Path) -> None:
    events_path = tmp_path / "events.jsonl"
    logger = TelemetryLogger(events_path)
    logger.log_event("engine.started", source="engine", data={})
    old = _read_jsonl(events_path)[0]
    old["ts"] = (datetime.now(tz=UTC) - timedelta(days=40)).isoformat().replace("+00:00", "Z")
    with events_path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(old) + "\n")

    assert logger.purge(timedelta(days=30)) == {"removed": 1, "kept": 1}
    assert logger.count_events() == 1
    assert logger.purge(timedelta(days=30)) == {"removed": 0, "kept": 1}


def test_parse_range() -> None:
    assert parse_range("7d") == timedelta(days=7)
    assert parse_range(" 24H ") == timedelta(hours=24)
    for bad in ("0d", "7w", "soon"):
        with pytest.raises(ValueError):
            parse_range(bad)
