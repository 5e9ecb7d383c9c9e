from __future__ import annotations

"""Free-form plan text -> quest drafts."""

import re
from collections.abc import Iterator
from datetime import date
from typing import Any

from .classifier import determine_priority, xp_for_priority
from .records import format_day


BULLET_PREFIX_PATTERN = re.compile(r"^[-*•\d.)\s]+")
MIN_TITLE_CHARS = 3


def clean_plan_line(line: str) -> str:
    return BULLET_PREFIX_PATTERN.sub("", line).strip()


def iter_plan_titles(plan_text: str) -> Iterator[str]:
    if not isinstance(plan_text, str):
        return
    for line in plan_text.splitlines():
        if not line.strip():
            continue
        title = clean_plan_line(line)
        if len(title) < MIN_TITLE_CHARS:
            continue
        yield title


def parse_plan_into_quests(plan_text: str, today: date | None = None) -> list[dict[str, Any]]:
    """Turn each bullet/numbered/plain line into an uncompleted quest due `today`."""

    due = format_day(today or date.today())
    drafts: list[dict[str, Any]] = []
    for title in iter_plan_titles(plan_text):
        priority = determine_priority(title, "")
        drafts.append(
            {
                "title": title,
                "description": "",
                "priority": priority,
                "xp": xp_for_priority(priority),
                "completed": False,
                "due_date": due,
                "recurring": False,
            }
        )
    return drafts
