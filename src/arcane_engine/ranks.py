from __future__ import annotations

"""Rank ladder and the pure XP -> level/rank/progress calculator."""

import math
from dataclasses import dataclass
from typing import Any


XP_PER_LEVEL = 100
OPEN_TIER_DISPLAY_WIDTH = 500


@dataclass(frozen=True)
class RankTier:
    name: str
    min_xp: int
    max_xp: float
    slug: str

    @property
    def open_ended(self) -> bool:
        return math.isinf(self.max_xp)

    def contains(self, xp: float) -> bool:
        return self.min_xp <= xp <= self.max_xp

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "min_xp": self.min_xp,
            "max_xp": None if self.open_ended else int(self.max_xp),
            "slug": self.slug,
        }


RANKS: tuple[RankTier, ...] = (
    RankTier("Null", 0, 99, "null"),
    RankTier("Awakened", 100, 299, "awakened"),
    RankTier("Branded", 300, 499, "branded"),
    RankTier("Warden", 500, 799, "warden"),
    RankTier("Reaper", 800, 1099, "reaper"),
    RankTier("Harbinger", 1100, 1399, "harbinger"),
    RankTier("Overlord", 1400, 1699, "overlord"),
    RankTier("Voidborne", 1700, 1999, "voidborne"),
    RankTier("Black Sovereign", 2000, math.inf, "sovereign"),
)


@dataclass(frozen=True)
class XPProgress:
    """Progress inside the current tier; the open tier uses a nominal width."""

    current: int
    max: int
    percentage: float

    def to_dict(self) -> dict[str, Any]:
        return {"current": self.current, "max": self.max, "percentage": self.percentage}


def find_rank_index(xp: float) -> int | None:
    """Index of the tier covering `xp`, or None when no tier does."""

    for index, tier in enumerate(RANKS):
        if tier.contains(xp):
            return index
    return None


def rank_of(xp: float) -> RankTier:
    # Uncovered XP (negative, or a gap between integer bounds) lands on the
    # lowest tier; callers that care use find_rank_index to flag it.
    index = find_rank_index(xp)
    if index is None:
        return RANKS[0]
    return RANKS[index]


def next_rank_of(xp: float) -> RankTier | None:
    index = find_rank_index(xp)
    if index is None:
        index = 0
    if index == len(RANKS) - 1:
        return None
    return RANKS[index + 1]


def level_of(xp: int) -> int:
    return xp // XP_PER_LEVEL + 1


def xp_progress(xp: int) -> XPProgress:
    tier = rank_of(xp)
    current = int(xp - tier.min_xp)
    if tier.open_ended:
        width = OPEN_TIER_DISPLAY_WIDTH
    else:
        width = int(tier.max_xp) - tier.min_xp + 1
    percentage = min(max(current / width * 100, 0.0), 100.0)
    return XPProgress(current=current, max=width, percentage=percentage)


def rank_table() -> list[dict[str, Any]]:
    return [tier.to_dict() for tier in RANKS]


def progression_view(xp: int) -> dict[str, Any]:
    """Everything the presentation layer derives from an XP total."""

    next_tier = next_rank_of(xp)
    return {
        "xp": xp,
        "level": level_of(xp),
        "rank": rank_of(xp).to_dict(),
        "next_rank": next_tier.to_dict() if next_tier else None,
        "progress": xp_progress(xp).to_dict(),
    }
