from __future__ import annotations

from datetime import date

from arcane_engine.penalties import day_status, evaluate_penalties, should_stabilize


def _user(last_active: str, **overrides) -> dict:  # type: ignore[no-untyped-def]
    user = {
        "id": "u1",
        "xp": 120,
        "streak": 4,
        "last_active_date": last_active,
        "xp_locked": False,
        "xp_reduced": False,
        "consecutive_missed_days": 0,
    }
    user.update(overrides)
    return user


def test_same_day_and_next_day_are_free() -> None:
    today = date(2026, 5, 10)
    for last in ("2026-05-10", "2026-05-09"):
        outcome = evaluate_penalties(_user(last), today)
        assert not outcome.applied
        assert not outcome.xp_locked
        assert outcome.updates == {}


def test_one_missed_day_locks_and_resets_streak() -> None:
    outcome = evaluate_penalties(_user("2026-05-08"), date(2026, 5, 10))
    assert outcome.applied
    assert outcome.day_gap == 2
    assert outcome.missed_days == 1
    assert outcome.streak_reset
    assert outcome.xp_locked
    assert not outcome.xp_reduced
    assert outcome.updates["streak"] == 0
    assert outcome.updates["last_active_date"] == "2026-05-10"


def test_two_missed_days_reduce() -> None:
    outcome = evaluate_penalties(_user("2026-05-07"), date(2026, 5, 10))
    assert outcome.missed_days == 2
    assert outcome.xp_locked
    assert outcome.xp_reduced


def test_missed_days_accumulate_across_checks() -> None:
    locked = _user("2026-05-08", xp_locked=True, consecutive_missed_days=1, streak=0)
    outcome = evaluate_penalties(locked, date(2026, 5, 10))
    assert outcome.missed_days == 2
    assert outcome.xp_reduced


def test_negative_gap_and_bad_date_change_nothing() -> None:
    assert not evaluate_penalties(_user("2026-05-12"), date(2026, 5, 10)).applied
    assert not evaluate_penalties(_user("not-a-date"), date(2026, 5, 10)).applied


def test_existing_flags_are_reported_when_nothing_changes() -> None:
    outcome = evaluate_penalties(_user("2026-05-10", xp_locked=True), date(2026, 5, 10))
    assert outcome.xp_locked
    assert not outcome.applied


def test_stabilization_requires_penalty_and_done_day() -> None:
    today = date(2026, 5, 10)
    locked = _user("2026-05-10", xp_locked=True)
    done = [{"id": "q1", "due_date": "2026-05-10", "completed": True}]
    open_today = done + [{"id": "q2", "due_date": "2026-05-10", "completed": False}]
    open_tomorrow = done + [{"id": "q3", "due_date": "2026-05-11", "completed": False}]
    assert should_stabilize(locked, done, today)
    assert should_stabilize(locked, [], today)
    assert should_stabilize(locked, open_tomorrow, today)
    assert not should_stabilize(locked, open_today, today)
    assert not should_stabilize(_user("2026-05-10"), done, today)


def test_day_status() -> None:
    assert day_status([]) == "none"
    assert day_status([{"completed": True}]) == "complete"
    assert day_status([{"completed": True}, {"completed": False}]) == "partial"
    assert day_status([{"completed": False}]) == "incomplete"


def test_three_day_gap_on_top_of_one_missed_day() -> None:
    prior = _user("2026-05-07", xp_locked=True, consecutive_missed_days=1, streak=0)
    outcome = evaluate_penalties(prior, date(2026, 5, 10))
    assert outcome.day_gap == 3
    assert outcome.missed_days == 3
    assert outcome.xp_locked
    assert outcome.xp_reduced
    assert outcome.updates["consecutive_missed_days"] == 3
