from __future__ import annotations

"""Missed-day penalty state machine and the stabilization gate.

A user is in one of three states, carried by two flags and a counter:

* normal: neither flag set
* streak at risk: ``xp_locked`` (completions award nothing)
* reduced: ``xp_locked`` and ``xp_reduced`` (awards are halved once unlocked)

Day gaps are whole calendar days between ``last_active_date`` and today. A gap
of one day is grace; only a fully skipped day counts as missed.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from .records import format_day, parse_day


LOCK_AFTER_MISSED_DAYS = 1
REDUCE_AFTER_MISSED_DAYS = 2


@dataclass(frozen=True)
class PenaltyOutcome:
    streak_reset: bool = False
    xp_locked: bool = False
    xp_reduced: bool = False
    stabilized: bool = False
    day_gap: int = 0
    missed_days: int = 0
    updates: dict[str, Any] = field(default_factory=dict)

    @property
    def applied(self) -> bool:
        return bool(self.updates)

    def to_dict(self) -> dict[str, Any]:
        return {
            "streak_reset": self.streak_reset,
            "xp_locked": self.xp_locked,
            "xp_reduced": self.xp_reduced,
            "stabilized": self.stabilized,
            "day_gap": self.day_gap,
            "missed_days": self.missed_days,
        }


def day_gap(last_active: date, today: date) -> int:
    return (today - last_active).days


def evaluate_penalties(user: dict[str, Any], today: date) -> PenaltyOutcome:
    """Compute the transition for `user` as of `today` without mutating it."""

    locked = bool(user.get("xp_locked", False))
    reduced = bool(user.get("xp_reduced", False))
    missed_so_far = int(user.get("consecutive_missed_days", 0))
    last_active = parse_day(user.get("last_active_date"))
    if last_active is None:
        return PenaltyOutcome(xp_locked=locked, xp_reduced=reduced, missed_days=missed_so_far)

    gap = day_gap(last_active, today)
    if gap <= 1:
        return PenaltyOutcome(xp_locked=locked, xp_reduced=reduced, day_gap=gap, missed_days=missed_so_far)

    missed = missed_so_far + gap - 1
    streak_reset = False
    if missed >= LOCK_AFTER_MISSED_DAYS:
        streak_reset = True
        locked = True
    if missed >= REDUCE_AFTER_MISSED_DAYS:
        reduced = True
    updates = {
        "streak": 0,
        "consecutive_missed_days": missed,
        "xp_locked": locked,
        "xp_reduced": reduced,
        "last_active_date": format_day(today),
    }
    return PenaltyOutcome(
        streak_reset=streak_reset,
        xp_locked=locked,
        xp_reduced=reduced,
        day_gap=gap,
        missed_days=missed,
        updates=updates,
    )


def quests_due_on(quests: list[dict[str, Any]], day: date) -> list[dict[str, Any]]:
    target = format_day(day)
    return [quest for quest in quests if quest.get("due_date") == target]


def all_today_complete(quests: list[dict[str, Any]], today: date) -> bool:
    return all(bool(quest.get("completed")) for quest in quests_due_on(quests, today))


def should_stabilize(user: dict[str, Any], quests: list[dict[str, Any]], today: date) -> bool:
    penalized = bool(user.get("xp_locked")) or bool(user.get("xp_reduced"))
    return penalized and all_today_complete(quests, today)


def stabilization_updates() -> dict[str, Any]:
    return {"xp_locked": False, "xp_reduced": False, "consecutive_missed_days": 0}


def day_status(quests: list[dict[str, Any]]) -> str:
    """`none`, `complete`, `partial` or `incomplete` for one day's quests."""

    if not quests:
        return "none"
    done = [bool(quest.get("completed")) for quest in quests]
    if all(done):
        return "complete"
    if any(done):
        return "partial"
    return "incomplete"
