from __future__ import annotations

"""Bounded newest-first system message log."""

from typing import Any

from .records import new_id, now_iso


MESSAGE_CAPACITY = 20
VALID_MESSAGE_TYPES = {"info", "success", "warning", "danger"}

STABILIZED = "SYSTEM STABILIZED"
XP_BLOCKED = "XP GAIN BLOCKED — SYSTEM LOCKED"
STREAK_RESET = "STREAK RESET"
XP_LOCKED = "XP GAIN LOCKED"
XP_REDUCED = "XP VALUE REDUCED"
DAILY_INITIALIZED = "DAILY QUEST INITIALIZED"


def quest_completed(awarded: int) -> str:
    return f"QUEST COMPLETED +{awarded} XP"


def level_up(level: int) -> str:
    return f"LEVEL UP! NOW LEVEL {level}"


def quest_assigned(xp: int) -> str:
    return f"SYSTEM ASSIGNED +{xp} XP"


def new_message(text: str, message_type: str = "info") -> dict[str, Any]:
    if message_type not in VALID_MESSAGE_TYPES:
        message_type = "info"
    return {"id": new_id(), "message": text, "type": message_type, "timestamp": now_iso()}


def append_message(messages: list[dict[str, Any]], message: dict[str, Any]) -> list[dict[str, Any]]:
    """Prepend `message` and drop whatever falls past the capacity."""

    kept = [item for item in messages if isinstance(item, dict)]
    return [message, *kept][:MESSAGE_CAPACITY]
