from __future__ import annotations

"""Construction and normalization of persisted user and quest records."""

import re
import uuid
from datetime import UTC, date, datetime
from typing import Any

from .classifier import VALID_PRIORITIES, determine_priority, xp_for_priority
from .ranks import level_of


WEEKDAYS = range(7)
DAY_PATTERN = re.compile(r"\A\d{4}-\d{2}-\d{2}(?:[T ]|\Z)")


class QuestValidationError(ValueError):
    """Structured quest input error for stable API responses."""

    def __init__(self, code: str, message: str, *, hint: str | None = None, **context: Any) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.hint = hint
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.hint:
            payload["hint"] = self.hint
        for key, value in self.context.items():
            if value is not None:
                payload[key] = value
        return payload


def new_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def format_day(value: date) -> str:
    return value.isoformat()


def parse_day(value: Any) -> date | None:
    """Parse a `YYYY-MM-DD` string or a full ISO timestamp; anything else is None."""

    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not DAY_PATTERN.match(value):
        return None
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        return datetime.fromisoformat(value).date()
    except ValueError:
        return None


def _as_int(value: Any, fallback: int, *, minimum: int = 0) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return fallback
    if parsed < minimum:
        return minimum
    return parsed


def new_user_record(username: str, email: str, today: date) -> dict[str, Any]:
    return {
        "id": new_id(),
        "username": username,
        "email": email,
        "xp": 0,
        "level": 1,
        "streak": 0,
        "last_active_date": format_day(today),
        "last_completion_date": None,
        "xp_locked": False,
        "xp_reduced": False,
        "consecutive_missed_days": 0,
        "created_at": now_iso(),
    }


def normalize_user(raw: dict[str, Any], today: date) -> dict[str, Any]:
    """Fill defaults, clamp counters, and recompute `level` from `xp`."""

    user = dict(raw)
    user["xp"] = _as_int(user.get("xp"), 0)
    user["level"] = level_of(user["xp"])
    user["streak"] = _as_int(user.get("streak"), 0)
    user["consecutive_missed_days"] = _as_int(user.get("consecutive_missed_days"), 0)
    user["xp_locked"] = bool(user.get("xp_locked", False))
    user["xp_reduced"] = bool(user.get("xp_reduced", False))
    last_active = parse_day(user.get("last_active_date"))
    user["last_active_date"] = format_day(last_active or today)
    last_completion = parse_day(user.get("last_completion_date"))
    user["last_completion_date"] = format_day(last_completion) if last_completion else None
    user.setdefault("username", "")
    user.setdefault("email", "")
    user.setdefault("created_at", now_iso())
    return user


def validate_recurring_days(value: Any) -> list[int] | None:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        raise QuestValidationError("INVALID_RECURRING_DAYS", "recurring_days must be a list of weekday numbers.")
    days: list[int] = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, int) or item not in WEEKDAYS:
            raise QuestValidationError(
                "INVALID_RECURRING_DAYS",
                "recurring_days entries must be integers 0-6.",
                hint="0 is Sunday, 6 is Saturday.",
                value=str(item),
            )
        if item not in days:
            days.append(item)
    return sorted(days)


def validate_title(value: Any) -> str:
    title = value.strip() if isinstance(value, str) else ""
    if not title:
        raise QuestValidationError("EMPTY_TITLE", "Quest title is required.")
    return title


def validate_due_date(value: Any, today: date) -> str:
    if value is None or value == "":
        return format_day(today)
    parsed = parse_day(value)
    if parsed is None:
        raise QuestValidationError(
            "INVALID_DUE_DATE",
            "due_date must be a calendar date.",
            hint="Use YYYY-MM-DD.",
            value=str(value),
        )
    return format_day(parsed)


def new_quest_record(
    title: str,
    *,
    today: date,
    description: str = "",
    due_date: str | None = None,
    recurring: bool = False,
    recurring_days: list[int] | None = None,
    is_daily: bool | None = None,
    priority: str | None = None,
) -> dict[str, Any]:
    """Build a quest; priority comes from the text unless a parsed draft carries it."""

    clean_title = validate_title(title)
    clean_description = (description or "").strip()
    if priority is None:
        priority = determine_priority(clean_title, clean_description)
    elif priority not in VALID_PRIORITIES:
        raise QuestValidationError("INVALID_PRIORITY", f"Unknown priority: {priority}", value=priority)
    quest: dict[str, Any] = {
        "id": new_id(),
        "title": clean_title,
        "description": clean_description,
        "priority": priority,
        "xp": xp_for_priority(priority),
        "completed": False,
        "due_date": validate_due_date(due_date, today),
        "created_at": now_iso(),
        "recurring": bool(recurring),
    }
    days = validate_recurring_days(recurring_days)
    if days is not None:
        quest["recurring_days"] = days
    if is_daily is not None:
        quest["is_daily"] = bool(is_daily)
    return quest
