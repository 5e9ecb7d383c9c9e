from __future__ import annotations

"""Progression service: quest, penalty, and completion transactions over the local store."""

import calendar
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any

from . import messages
from .completion import resolve_completion
from .config import EngineSettings, load_settings
from .paths import arcane_home, ensure_home_dirs
from .penalties import (
    PenaltyOutcome,
    day_status,
    evaluate_penalties,
    quests_due_on,
    should_stabilize,
    stabilization_updates,
)
from .planner import parse_plan_into_quests
from .ranks import find_rank_index, progression_view
from .records import (
    QuestValidationError,
    format_day,
    new_quest_record,
    new_user_record,
    normalize_user,
    now_iso,
    validate_due_date,
    validate_recurring_days,
    validate_title,
)
from .store import JsonStore
from .telemetry import TelemetryLogger, parse_range, sha256_hex


EDITABLE_QUEST_FIELDS = {"title", "description", "due_date", "recurring", "recurring_days", "is_daily"}
MAX_USERNAME_CHARS = 40


@dataclass
class ProgressionService:
    """Stateful local service; every mutation is a locked read-modify-write on one user."""

    home: Path
    dirs: dict[str, Path]
    settings: EngineSettings
    store: JsonStore
    telemetry: TelemetryLogger

    @classmethod
    def create(cls, home: Path | None = None) -> "ProgressionService":
        """Instantiate a service over `home` (default `ARCANE_HOME`) and log startup."""

        home = home or arcane_home()
        dirs = ensure_home_dirs(home)
        settings = load_settings(home)
        telemetry = TelemetryLogger(dirs["telemetry"] / "events.jsonl", enabled=settings.telemetry_enabled)
        service = cls(home=home, dirs=dirs, settings=settings, store=JsonStore(dirs), telemetry=telemetry)
        service.telemetry.log_event(
            "engine.started",
            source="engine",
            data={
                "home_path_hash": sha256_hex(str(home)),
                "timezone": settings.timezone,
            },
        )
        return service

    def today(self, today: date | None = None) -> date:
        return today or self.settings.today()

    def _emit_event(
        self,
        event_type: str,
        *,
        user_id: str | None,
        source: str,
        data: dict[str, Any],
        trace_id: str | None = None,
    ) -> None:
        self.telemetry.log_event(event_type, user_id=user_id, source=source, data=data, trace_id=trace_id)

    # ---------------------------------------------------------------- users

    def _load_user(self, user_id: str, today: date) -> dict[str, Any] | None:
        raw = self.store.get_user(user_id)
        if raw is None:
            return None
        return normalize_user(raw, today)

    def create_user(
        self,
        username: str,
        email: str,
        *,
        today: date | None = None,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        """Register a local user; usernames and emails are unique case-insensitively."""

        clean_username = (username or "").strip()
        clean_email = (email or "").strip()
        if not clean_username or len(clean_username) > MAX_USERNAME_CHARS:
            raise ValueError(f"username must be 1-{MAX_USERNAME_CHARS} characters.")
        if "@" not in clean_email:
            raise ValueError("email must contain '@'.")
        for existing in self.store.list_users():
            if str(existing.get("username", "")).lower() == clean_username.lower():
                raise ValueError("Username already taken.")
            if str(existing.get("email", "")).lower() == clean_email.lower():
                raise ValueError("Email already registered.")

        user = new_user_record(clean_username, clean_email, self.today(today))
        self.store.save_user(user)
        self._emit_event(
            "user.created",
            user_id=user["id"],
            source=source,
            trace_id=trace_id,
            data={"username_hash": sha256_hex(clean_username.lower())},
        )
        return user

    def get_user(self, user_id: str, *, today: date | None = None) -> dict[str, Any] | None:
        return self._load_user(user_id, self.today(today))

    def find_user(self, identifier: str) -> dict[str, Any] | None:
        """Look a user up by id, username, or email."""

        needle = (identifier or "").strip().lower()
        if not needle:
            return None
        today = self.today()
        for raw in self.store.list_users():
            candidates = {
                str(raw.get("id", "")).lower(),
                str(raw.get("username", "")).lower(),
                str(raw.get("email", "")).lower(),
            }
            if needle in candidates:
                return normalize_user(raw, today)
        return None

    def list_users(self) -> list[dict[str, Any]]:
        today = self.today()
        users = [normalize_user(raw, today) for raw in self.store.list_users()]
        users.sort(key=lambda item: str(item.get("username", "")).lower())
        return users

    # ------------------------------------------------------------- messages

    def add_message(self, user_id: str, text: str, message_type: str = "info") -> dict[str, Any] | None:
        with self.store.user_lock(user_id):
            if self.store.get_user(user_id) is None:
                return None
            message = messages.new_message(text, message_type)
            current = self.store.get_messages(user_id)
            self.store.save_messages(user_id, messages.append_message(current, message))
            return message

    def list_messages(self, user_id: str) -> list[dict[str, Any]]:
        return self.store.get_messages(user_id)[: messages.MESSAGE_CAPACITY]

    def clear_messages(self, user_id: str, *, source: str = "cli", trace_id: str | None = None) -> int:
        with self.store.user_lock(user_id):
            if self.store.get_user(user_id) is None:
                return 0
            removed = len(self.store.get_messages(user_id))
            self.store.clear_messages(user_id)
        self._emit_event("messages.cleared", user_id=user_id, source=source, trace_id=trace_id, data={"removed": removed})
        return removed

    # --------------------------------------------------------------- quests

    def list_quests(self, user_id: str, *, due_date: date | None = None) -> list[dict[str, Any]]:
        quests = self.store.get_quests(user_id)
        if due_date is not None:
            return quests_due_on(quests, due_date)
        return quests

    def get_quest(self, user_id: str, quest_id: str) -> dict[str, Any] | None:
        for quest in self.store.get_quests(user_id):
            if quest.get("id") == quest_id:
                return quest
        return None

    def _require_user(self, user_id: str, today: date) -> dict[str, Any]:
        user = self._load_user(user_id, today)
        if user is None:
            raise KeyError(f"Unknown user: {user_id}")
        return user

    def _store_new_quests(
        self,
        user_id: str,
        new_quests: list[dict[str, Any]],
        *,
        source: str,
        trace_id: str | None,
    ) -> None:
        quests = self.store.get_quests(user_id)
        quests.extend(new_quests)
        self.store.save_quests(user_id, quests)
        for quest in new_quests:
            self.add_message(user_id, messages.quest_assigned(quest["xp"]), "info")
            self._emit_event(
                "quest.created",
                user_id=user_id,
                source=source,
                trace_id=trace_id,
                data={"quest_id": quest["id"], "priority": quest["priority"], "xp": quest["xp"]},
            )

    def add_quest(
        self,
        user_id: str,
        title: str,
        description: str = "",
        due_date: str | None = None,
        recurring: bool = False,
        recurring_days: list[int] | None = None,
        is_daily: bool | None = None,
        *,
        today: date | None = None,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a quest whose priority and XP are derived from its text."""

        current_day = self.today(today)
        with self.store.user_lock(user_id):
            self._require_user(user_id, current_day)
            quest = new_quest_record(
                title,
                today=current_day,
                description=description,
                due_date=due_date,
                recurring=recurring,
                recurring_days=recurring_days,
                is_daily=is_daily,
            )
            self._store_new_quests(user_id, [quest], source=source, trace_id=trace_id)
            return quest

    def add_plan(
        self,
        user_id: str,
        plan_text: str,
        *,
        today: date | None = None,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Bulk-create quests from plan text; every parsed line is due today."""

        current_day = self.today(today)
        with self.store.user_lock(user_id):
            self._require_user(user_id, current_day)
            created = [
                new_quest_record(
                    draft["title"],
                    today=current_day,
                    description=draft["description"],
                    due_date=draft["due_date"],
                    recurring=draft["recurring"],
                    priority=draft["priority"],
                )
                for draft in parse_plan_into_quests(plan_text, today=current_day)
            ]
            if created:
                self._store_new_quests(user_id, created, source=source, trace_id=trace_id)
            return created

    def update_quest(
        self,
        user_id: str,
        quest_id: str,
        updates: dict[str, Any],
        *,
        today: date | None = None,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any] | None:
        """Edit descriptive fields; XP, priority and completion are not editable."""

        blocked = sorted(set(updates) - EDITABLE_QUEST_FIELDS)
        if blocked:
            raise QuestValidationError(
                "FIELD_NOT_EDITABLE",
                f"Quest fields cannot be edited: {', '.join(blocked)}",
                hint="XP and priority are fixed at creation; use complete to finish a quest.",
            )
        current_day = self.today(today)
        clean: dict[str, Any] = {}
        if "title" in updates:
            clean["title"] = validate_title(updates["title"])
        if "description" in updates:
            clean["description"] = str(updates["description"] or "").strip()
        if "due_date" in updates:
            clean["due_date"] = validate_due_date(updates["due_date"], current_day)
        if "recurring" in updates:
            clean["recurring"] = bool(updates["recurring"])
        if "recurring_days" in updates:
            clean["recurring_days"] = validate_recurring_days(updates["recurring_days"])
        if "is_daily" in updates:
            clean["is_daily"] = bool(updates["is_daily"])

        with self.store.user_lock(user_id):
            quests = self.store.get_quests(user_id)
            for index, quest in enumerate(quests):
                if quest.get("id") != quest_id:
                    continue
                updated = {**quest, **clean}
                if updated.get("recurring_days") is None:
                    updated.pop("recurring_days", None)
                quests[index] = updated
                self.store.save_quests(user_id, quests)
                self._emit_event(
                    "quest.updated",
                    user_id=user_id,
                    source=source,
                    trace_id=trace_id,
                    data={"quest_id": quest_id, "fields": sorted(clean)},
                )
                return updated
        return None

    def delete_quest(
        self,
        user_id: str,
        quest_id: str,
        *,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any] | None:
        with self.store.user_lock(user_id):
            quests = self.store.get_quests(user_id)
            removed = next((quest for quest in quests if quest.get("id") == quest_id), None)
            if removed is None:
                return None
            self.store.save_quests(user_id, [quest for quest in quests if quest.get("id") != quest_id])
        self._emit_event(
            "quest.deleted",
            user_id=user_id,
            source=source,
            trace_id=trace_id,
            data={"quest_id": quest_id, "completed": bool(removed.get("completed"))},
        )
        return removed

    # ------------------------------------------------------------ penalties

    def run_penalty_check(
        self,
        user_id: str,
        *,
        today: date | None = None,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> PenaltyOutcome:
        """Apply missed-day penalties; an unknown user yields an all-false result."""

        current_day = self.today(today)
        with self.store.user_lock(user_id):
            raw = self.store.get_user(user_id)
            if raw is None:
                return PenaltyOutcome()
            user = normalize_user(raw, current_day)
            outcome = evaluate_penalties(user, current_day)
            if outcome.applied:
                user.update(outcome.updates)
                self.store.save_user(user)
            elif raw.get("last_active_date") != user["last_active_date"]:
                # Unreadable date was repaired to today; persist so later gaps are measured from it.
                self.store.save_user(user)
        if outcome.applied:
            self._emit_event(
                "penalty.applied",
                user_id=user_id,
                source=source,
                trace_id=trace_id,
                data=outcome.to_dict(),
            )
        return outcome

    def try_stabilize(
        self,
        user_id: str,
        *,
        today: date | None = None,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> bool:
        """Clear lock/reduction when every quest due today is complete (or none are due)."""

        current_day = self.today(today)
        with self.store.user_lock(user_id):
            user = self._load_user(user_id, current_day)
            if user is None:
                return False
            if not should_stabilize(user, self.store.get_quests(user_id), current_day):
                return False
            was = {"xp_locked": user["xp_locked"], "xp_reduced": user["xp_reduced"]}
            user.update(stabilization_updates())
            self.store.save_user(user)
            self.add_message(user_id, messages.STABILIZED, "success")
        self._emit_event("system.stabilized", user_id=user_id, source=source, trace_id=trace_id, data=was)
        return True

    # ----------------------------------------------------------- completion

    def complete_quest(
        self,
        user_id: str,
        quest_id: str,
        *,
        today: date | None = None,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any] | None:
        """Complete one quest atomically; returns None when the user or quest is unknown."""

        current_day = self.today(today)
        with self.store.user_lock(user_id):
            user = self._load_user(user_id, current_day)
            if user is None:
                return None
            quests = self.store.get_quests(user_id)
            index = next((i for i, quest in enumerate(quests) if quest.get("id") == quest_id), None)
            if index is None:
                return None
            quest = quests[index]
            if quest.get("completed"):
                return {
                    "quest_id": quest_id,
                    "quest": quest,
                    "xp_awarded": 0,
                    "blocked": False,
                    "already_completed": True,
                    "level_up": False,
                    "xp": user["xp"],
                    "level": user["level"],
                    "stabilized": False,
                }

            outcome = resolve_completion(user, quest, current_day)
            quests[index] = {**quest, "completed": True, "completed_at": now_iso()}
            self.store.save_quests(user_id, quests)
            if outcome.user_updates:
                user.update(outcome.user_updates)
                self.store.save_user(user)
            for text, message_type in outcome.notices:
                self.add_message(user_id, text, message_type)

            self._emit_event(
                "quest.completed",
                user_id=user_id,
                source=source,
                trace_id=trace_id,
                data={
                    "quest_id": quest_id,
                    "priority": quest.get("priority"),
                    "xp_awarded": outcome.awarded_xp,
                    "blocked": outcome.blocked,
                    "reduced": bool(user.get("xp_reduced")) and not outcome.blocked,
                    "level_up": outcome.leveled_up,
                    "total_xp": user["xp"],
                },
            )
            stabilized = self.try_stabilize(user_id, today=current_day, source=source, trace_id=trace_id)
            return {
                "quest_id": quest_id,
                "quest": quests[index],
                "xp_awarded": outcome.awarded_xp,
                "blocked": outcome.blocked,
                "already_completed": False,
                "level_up": outcome.leveled_up,
                "xp": user["xp"],
                "level": user["level"],
                "stabilized": stabilized,
            }

    # ---------------------------------------------------------------- views

    def get_status(self, user_id: str, *, source: str = "cli", trace_id: str | None = None) -> dict[str, Any] | None:
        """Return level, rank, next rank, in-tier progress, streak and penalty flags."""

        user = self.get_user(user_id)
        if user is None:
            return None
        if find_rank_index(user["xp"]) is None:
            self._emit_event(
                "risk.flagged",
                user_id=user_id,
                source=source,
                trace_id=trace_id,
                data={"reason": "rank_invariant_violation", "xp": user["xp"]},
            )
        view = progression_view(user["xp"])
        view.update(
            {
                "user_id": user_id,
                "username": user["username"],
                "streak": user["streak"],
                "xp_locked": user["xp_locked"],
                "xp_reduced": user["xp_reduced"],
                "consecutive_missed_days": user["consecutive_missed_days"],
                "last_active_date": user["last_active_date"],
            }
        )
        return view

    def get_profile_stats(self, user_id: str) -> dict[str, Any] | None:
        user = self.get_user(user_id)
        if user is None:
            return None
        quests = self.store.get_quests(user_id)
        completed = [quest for quest in quests if quest.get("completed")]
        view = progression_view(user["xp"])
        return {
            "user_id": user_id,
            "username": user["username"],
            "created_at": user["created_at"],
            "level": view["level"],
            "rank": view["rank"],
            "streak": user["streak"],
            "quests_total": len(quests),
            "quests_completed": len(completed),
            "quest_xp_completed": sum(int(quest.get("xp", 0)) for quest in completed),
        }

    def calendar_month(self, user_id: str, year: int, month: int) -> list[dict[str, Any]] | None:
        """One row per day of the month with that day's quest completion status."""

        if self.store.get_user(user_id) is None:
            return None
        if not 1 <= month <= 12:
            raise ValueError("month must be 1-12.")
        quests = self.store.get_quests(user_id)
        rows: list[dict[str, Any]] = []
        for day_number in range(1, calendar.monthrange(year, month)[1] + 1):
            day = date(year, month, day_number)
            due = quests_due_on(quests, day)
            completed = [quest for quest in due if quest.get("completed")]
            rows.append(
                {
                    "date": format_day(day),
                    "status": day_status(due),
                    "total": len(due),
                    "completed": len(completed),
                    "xp_completed": sum(int(quest.get("xp", 0)) for quest in completed),
                }
            )
        return rows

    # ------------------------------------------------------------- sessions

    def login(self, identifier: str) -> dict[str, Any] | None:
        """Remember `identifier`'s user as the active CLI session (no credentials involved)."""

        user = self.find_user(identifier)
        if user is None:
            return None
        self.store.save_session({"user_id": user["id"], "opened_at": now_iso()})
        return user

    def logout(self) -> bool:
        had_session = bool(self.store.get_session().get("user_id"))
        self.store.clear_session()
        return had_session

    def current_user_id(self) -> str | None:
        user_id = self.store.get_session().get("user_id")
        if isinstance(user_id, str) and self.store.get_user(user_id) is not None:
            return user_id
        return None

    # ------------------------------------------------------------ telemetry

    def telemetry_status(self) -> dict[str, Any]:
        return {
            "enabled": self.telemetry.enabled,
            "path": str(self.telemetry.events_path),
            "event_count": self.telemetry.count_events(),
            "retention_days": self.settings.telemetry_retention_days,
        }

    def telemetry_export(self, range_value: str, out_path: Path | None = None, user_id: str | None = None) -> dict[str, Any]:
        return self.telemetry.export_summary(range_value=range_value, user_id=user_id, out_path=out_path)

    def telemetry_purge(self, older_than: str | None = None) -> dict[str, Any]:
        """Drop events older than `older_than` (default: the configured retention window)."""

        range_value = older_than or f"{self.settings.telemetry_retention_days}d"
        result = self.telemetry.purge(parse_range(range_value))
        return {"older_than": range_value, **result}
