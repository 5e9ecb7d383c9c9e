from __future__ import annotations

"""Pure step of the quest completion transaction."""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from . import messages
from .ranks import level_of
from .records import format_day


REDUCED_XP_FACTOR = 0.5


@dataclass(frozen=True)
class CompletionOutcome:
    quest_id: str
    awarded_xp: int
    blocked: bool
    old_level: int
    new_level: int
    user_updates: dict[str, Any] = field(default_factory=dict)
    notices: list[tuple[str, str]] = field(default_factory=list)

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level


def awarded_xp(quest_xp: int, *, reduced: bool) -> int:
    if reduced:
        return int(quest_xp * REDUCED_XP_FACTOR)
    return quest_xp


def next_streak(user: dict[str, Any], today: date) -> int:
    last = user.get("last_completion_date")
    streak = int(user.get("streak", 0))
    if last == format_day(today):
        return streak
    if last == format_day(today - timedelta(days=1)):
        return streak + 1
    return 1


def resolve_completion(user: dict[str, Any], quest: dict[str, Any], today: date) -> CompletionOutcome:
    """Decide award, new progression fields, and notices for one completion."""

    old_xp = int(user.get("xp", 0))
    old_level = level_of(old_xp)
    quest_id = str(quest.get("id"))

    if user.get("xp_locked"):
        return CompletionOutcome(
            quest_id=quest_id,
            awarded_xp=0,
            blocked=True,
            old_level=old_level,
            new_level=old_level,
            notices=[(messages.XP_BLOCKED, "danger")],
        )

    awarded = awarded_xp(int(quest.get("xp", 0)), reduced=bool(user.get("xp_reduced")))
    new_xp = old_xp + awarded
    new_level = level_of(new_xp)
    notices = [(messages.quest_completed(awarded), "success")]
    if new_level > old_level:
        notices.append((messages.level_up(new_level), "success"))
    return CompletionOutcome(
        quest_id=quest_id,
        awarded_xp=awarded,
        blocked=False,
        old_level=old_level,
        new_level=new_level,
        user_updates={
            "xp": new_xp,
            "level": new_level,
            "streak": next_streak(user, today),
            "last_active_date": format_day(today),
            "last_completion_date": format_day(today),
        },
        notices=notices,
    )
