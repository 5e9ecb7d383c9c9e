from __future__ import annotations

"""Keyword priority classifier and the priority -> XP table."""

from typing import Any


HIGH_PRIORITY_KEYWORDS = (
    "urgent",
    "critical",
    "important",
    "deadline",
    "asap",
    "emergency",
    "must",
    "required",
    "essential",
    "priority",
    "exam",
    "interview",
    "presentation",
    "meeting",
    "submit",
    "final",
    "project",
    "workout",
    "exercise",
    "training",
    "study",
    "learn",
    "master",
)
LOW_PRIORITY_KEYWORDS = (
    "optional",
    "maybe",
    "someday",
    "whenever",
    "leisure",
    "relax",
    "fun",
    "entertainment",
    "browse",
    "watch",
    "play",
    "chill",
)
PRIORITY_XP = {"high": 50, "medium": 30, "low": 10}
VALID_PRIORITIES = set(PRIORITY_XP)
FALLBACK_XP = 10


def determine_priority(title: str, description: str = "") -> str:
    text = f"{title or ''} {description or ''}".lower()
    # Substring match on purpose: "studying" counts as "study".
    if any(keyword in text for keyword in HIGH_PRIORITY_KEYWORDS):
        return "high"
    if any(keyword in text for keyword in LOW_PRIORITY_KEYWORDS):
        return "low"
    return "medium"


def xp_for_priority(priority: str) -> int:
    return PRIORITY_XP.get(priority, FALLBACK_XP)


def classify(title: str, description: str = "") -> dict[str, Any]:
    """Preview of what a quest with this text would be assigned."""

    priority = determine_priority(title, description)
    return {"priority": priority, "xp": xp_for_priority(priority)}
