from __future__ import annotations

"""Append-only JSONL event log with payload sanitization and window summaries."""

import hashlib
import json
import platform
import re
import sys
import unicodedata
import uuid
from collections import Counter
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
from typing import Any

from .security import payload_contains_pii, payload_contains_secrets


SCHEMA_VERSION = "0.1"
VALID_EVENT_TYPES = {
    "engine.started",
    "user.created",
    "session.started",
    "quest.created",
    "quest.updated",
    "quest.deleted",
    "quest.completed",
    "penalty.applied",
    "system.stabilized",
    "messages.cleared",
    "risk.flagged",
}
VALID_SOURCES = {"cli", "api", "engine"}
MAX_STRING_LENGTH = 200
RANGE_PATTERN = re.compile(r"^(\d+)([dh])$")


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _utc_now_rfc3339() -> str:
    return _utc_now().replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _parse_ts(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _safe_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def _strip_control_chars(value: str) -> str:
    return "".join(ch for ch in value if not unicodedata.category(ch).startswith("C"))


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class BuildInfo:
    """Static build/runtime metadata attached to every event."""

    engine_version: str
    python_version: str
    platform: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "engine_version": self.engine_version,
            "python_version": self.python_version,
            "platform": self.platform,
        }


@dataclass(frozen=True)
class SanitizeStats:
    redacted_fields: int = 0
    truncated_fields: int = 0

    def __add__(self, other: "SanitizeStats") -> "SanitizeStats":
        return SanitizeStats(
            redacted_fields=self.redacted_fields + other.redacted_fields,
            truncated_fields=self.truncated_fields + other.truncated_fields,
        )


def _sanitize_text(value: str) -> tuple[str, SanitizeStats]:
    cleaned = _strip_control_chars(value).strip()
    if payload_contains_secrets(cleaned) or payload_contains_pii(cleaned):
        return "[redacted]", SanitizeStats(redacted_fields=1)
    if len(cleaned) > MAX_STRING_LENGTH:
        return f"{cleaned[:MAX_STRING_LENGTH]}...[truncated]", SanitizeStats(truncated_fields=1)
    return cleaned, SanitizeStats()


def sanitize_event_data(data: Any) -> tuple[Any, SanitizeStats]:
    """Recursively strip controls and redact secrets/PII from an event payload."""

    if data is None or isinstance(data, (bool, int, float)):
        return data, SanitizeStats()
    if isinstance(data, dict):
        sanitized: dict[str, Any] = {}
        stats = SanitizeStats()
        for key, value in data.items():
            key_text, key_stats = _sanitize_text(str(key))
            value_sanitized, value_stats = sanitize_event_data(value)
            sanitized[key_text] = value_sanitized
            stats = stats + key_stats + value_stats
        return sanitized, stats
    if isinstance(data, (list, tuple)):
        items: list[Any] = []
        stats = SanitizeStats()
        for item in data:
            item_sanitized, item_stats = sanitize_event_data(item)
            items.append(item_sanitized)
            stats = stats + item_stats
        return items, stats
    return _sanitize_text(str(data))


def parse_range(range_value: str) -> timedelta:
    """Parse compact duration windows such as `7d` or `24h`."""

    match = RANGE_PATTERN.match(range_value.strip().lower())
    if not match:
        raise ValueError("range must be like 7d or 24h")
    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError("range amount must be > 0")
    if match.group(2) == "d":
        return timedelta(days=amount)
    return timedelta(hours=amount)


def detect_engine_version() -> str:
    try:
        return package_version("arcane-engine")
    except PackageNotFoundError:
        return "0.1.0"


class TelemetryLogger:
    """Append-only event logger; a disabled logger accepts events and drops them."""

    def __init__(self, events_path: Path, *, enabled: bool = True) -> None:
        self.events_path = events_path
        self.enabled = enabled
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        self.build = BuildInfo(
            engine_version=detect_engine_version(),
            python_version=sys.version.split()[0],
            platform=platform.platform(),
        )

    def _append_jsonl(self, payload: dict[str, Any]) -> None:
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        with self.events_path.open("a", encoding="utf-8", newline="\n") as handle:
            handle.write(_safe_json(payload))
            handle.write("\n")

    def _base_event(
        self,
        *,
        event_type: str,
        user_id: str | None,
        source: str,
        data: dict[str, Any],
        trace_id: str | None,
    ) -> dict[str, Any]:
        if event_type not in VALID_EVENT_TYPES:
            data = {"reason": "invalid_event_type", "invalid_event_type_hash": sha256_hex(event_type)}
            event_type = "risk.flagged"
        return {
            "schema_version": SCHEMA_VERSION,
            "event_id": str(uuid.uuid4()),
            "ts": _utc_now_rfc3339(),
            "event_type": event_type,
            "user_id": user_id,
            "source": source if source in VALID_SOURCES else "engine",
            "trace_id": trace_id,
            "build": self.build.to_dict(),
            "data": data,
        }

    def log_event(
        self,
        event_type: str,
        *,
        source: str,
        data: dict[str, Any],
        user_id: str | None = None,
        trace_id: str | None = None,
        _emit_sanitize_flag: bool = True,
    ) -> None:
        """Write one sanitized event, plus a risk flag when sanitizing changed it."""

        if not self.enabled:
            return
        try:
            sanitized, stats = sanitize_event_data(data)
            self._append_jsonl(
                self._base_event(
                    event_type=event_type,
                    user_id=user_id,
                    source=source,
                    data=sanitized if isinstance(sanitized, dict) else {"value": sanitized},
                    trace_id=trace_id,
                )
            )
            if _emit_sanitize_flag and (stats.redacted_fields or stats.truncated_fields):
                self.log_event(
                    "risk.flagged",
                    source=source,
                    user_id=user_id,
                    trace_id=trace_id,
                    data={
                        "reason": "telemetry_sanitized",
                        "trigger_event_type": event_type,
                        "fields_redacted_count": stats.redacted_fields,
                        "fields_truncated_count": stats.truncated_fields,
                    },
                    _emit_sanitize_flag=False,
                )
        except Exception as exc:  # noqa: BLE001
            print(f"[telemetry] failed to append event: {exc}", file=sys.stderr)

    def iter_events(self) -> Iterator[dict[str, Any]]:
        """Yield stored events in order; torn or non-object lines are skipped."""

        if not self.events_path.exists():
            return
        with self.events_path.open("r", encoding="utf-8") as handle:
            for raw in filter(str.strip, handle):
                try:
                    payload = json.loads(raw)
                except json.JSONDecodeError:
                    continue
                if isinstance(payload, dict):
                    yield payload

    def count_events(self) -> int:
        return sum(1 for _ in self.iter_events())

    def purge(self, older_than: timedelta) -> dict[str, int]:
        """Drop events older than `older_than`."""

        events = list(self.iter_events())
        cutoff = _utc_now() - older_than
        kept = [event for event in events if (_parse_ts(event.get("ts")) or cutoff) >= cutoff]
        temp_path = self.events_path.parent / f".{self.events_path.name}.tmp"
        temp_path.write_text("".join(f"{_safe_json(event)}\n" for event in kept), encoding="utf-8")
        temp_path.replace(self.events_path)
        return {"removed": len(events) - len(kept), "kept": len(kept)}

    def export_summary(
        self,
        *,
        range_value: str,
        user_id: str | None = None,
        out_path: Path | None = None,
    ) -> dict[str, Any]:
        """Aggregate progression activity in a time window, optionally for one user."""

        window = parse_range(range_value)
        end = _utc_now()
        start = end - window
        in_window: list[dict[str, Any]] = []
        for event in self.iter_events():
            ts = _parse_ts(event.get("ts"))
            if ts is None or not (start <= ts <= end):
                continue
            if user_id is not None and event.get("user_id") != user_id:
                continue
            in_window.append(event)

        completions = [evt for evt in in_window if evt.get("event_type") == "quest.completed"]
        blocked = [evt for evt in completions if evt.get("data", {}).get("blocked")]
        penalties = [evt for evt in in_window if evt.get("event_type") == "penalty.applied"]
        flags = [evt for evt in in_window if evt.get("event_type") == "risk.flagged"]
        by_type = Counter(str(evt.get("event_type")) for evt in in_window)
        by_source = Counter(str(evt.get("source")) for evt in completions)
        by_priority = Counter(str(evt.get("data", {}).get("priority", "unknown")) for evt in completions)

        summary = {
            "schema_version": SCHEMA_VERSION,
            "generated_at": _utc_now_rfc3339(),
            "range": range_value,
            "user_id_filter": user_id,
            "window_start": start.replace(microsecond=0).isoformat().replace("+00:00", "Z"),
            "window_end": end.replace(microsecond=0).isoformat().replace("+00:00", "Z"),
            "events_considered": len(in_window),
            "events_by_type": dict(sorted(by_type.items())),
            "completions_total": len(completions),
            "completions_blocked": len(blocked),
            "completions_by_source": dict(sorted(by_source.items())),
            "completions_by_priority": dict(sorted(by_priority.items())),
            "xp_awarded_total": sum(int(evt.get("data", {}).get("xp_awarded", 0)) for evt in completions),
            "level_ups": sum(1 for evt in completions if evt.get("data", {}).get("level_up")),
            "penalties_applied": len(penalties),
            "stabilizations": by_type.get("system.stabilized", 0),
            "risk_flags_count": len(flags),
        }
        if out_path is not None:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
        return summary
