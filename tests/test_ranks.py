from __future__ import annotations

from arcane_engine.ranks import RANKS, find_rank_index, level_of, next_rank_of, progression_view, rank_of, rank_table, xp_progress


def test_rank_ladder_is_contiguous_with_one_open_tier() -> None:
    assert RANKS[0].min_xp == 0
    for lower, upper in zip(RANKS, RANKS[1:]):
        assert upper.min_xp == lower.max_xp + 1
    assert [tier.open_ended for tier in RANKS].count(True) == 1
    assert RANKS[-1].open_ended


def test_rank_of_tier_boundaries() -> None:
    assert rank_of(0).name == "Null"
    assert rank_of(99).name == "Null"
    assert rank_of(100).name == "Awakened"
    assert rank_of(1999).name == "Voidborne"
    assert rank_of(2000).name == "Black Sovereign"
    assert rank_of(250000).name == "Black Sovereign"


def test_uncovered_xp_falls_back_but_is_detectable() -> None:
    assert find_rank_index(-5) is None
    assert find_rank_index(99.5) is None
    assert rank_of(-5).name == "Null"
    assert find_rank_index(500) == 3


def test_next_rank_and_level() -> None:
    assert next_rank_of(0).name == "Awakened"
    assert next_rank_of(2000) is None
    assert level_of(0) == 1
    assert level_of(99) == 1
    assert level_of(100) == 2
    assert level_of(12345) == 124


def test_xp_progress_inside_tier() -> None:
    progress = xp_progress(150)
    assert progress.current == 50
    assert progress.max == 200
    assert progress.percentage == 25.0

    start = xp_progress(500)
    assert start.current == 0
    assert start.percentage == 0.0


def test_xp_progress_open_tier_is_clamped() -> None:
    assert xp_progress(2250).percentage == 50.0
    capped = xp_progress(9000)
    assert capped.max == 500
    assert capped.percentage == 100.0


def test_rank_table_serializes_open_tier_as_null() -> None:
    table = rank_table()
    assert len(table) == 9
    assert table[-1]["max_xp"] is None
    assert table[-1]["slug"] == "sovereign"


def test_progression_view_shape() -> None:
    view = progression_view(320)
    assert view["level"] == 4
    assert view["rank"]["name"] == "Branded"
    assert view["next_rank"]["name"] == "Warden"
    assert view["progress"]["current"] == 20


def test_rank_and_level_never_decrease_as_xp_grows() -> None:
    previous_index = 0
    previous_level = 1
    for xp in range(0, 3001):
        index = find_rank_index(xp)
        assert index is not None
        assert index >= previous_index
        assert RANKS[index] == rank_of(xp)
        assert level_of(xp) >= previous_level
        previous_index = index
        previous_level = level_of(xp)
