from __future__ import annotations

"""Explicit per-user session passed to every core call instead of a global current user."""

from dataclasses import dataclass
from datetime import date
from typing import Any

from . import messages
from .service import ProgressionService


@dataclass
class SessionContext:
    """Holds only the user id; the store stays the single source of truth."""

    service: ProgressionService
    user_id: str
    source: str = "cli"
    trace_id: str | None = None

    def _call_kwargs(self) -> dict[str, Any]:
        return {"source": self.source, "trace_id": self.trace_id}

    def user(self) -> dict[str, Any] | None:
        return self.service.get_user(self.user_id)

    def start(self, today: date | None = None) -> dict[str, Any] | None:
        """Session-start routine: penalties, stabilization, and the daily notice."""

        service = self.service
        current_day = service.today(today)
        with service.store.user_lock(self.user_id):
            if service.get_user(self.user_id, today=current_day) is None:
                return None
            outcome = service.run_penalty_check(self.user_id, today=current_day, **self._call_kwargs())
            if outcome.applied:
                if outcome.streak_reset:
                    service.add_message(self.user_id, messages.STREAK_RESET, "danger")
                if outcome.xp_locked:
                    service.add_message(self.user_id, messages.XP_LOCKED, "danger")
                if outcome.xp_reduced:
                    service.add_message(self.user_id, messages.XP_REDUCED, "danger")
                stabilized = False
            else:
                # A penalty applied in this same pass is never cleared by it.
                stabilized = service.try_stabilize(self.user_id, today=current_day, **self._call_kwargs())

            due_today = service.list_quests(self.user_id, due_date=current_day)
            if not due_today:
                service.add_message(self.user_id, messages.DAILY_INITIALIZED, "info")

        service._emit_event(
            "session.started",
            user_id=self.user_id,
            data={"penalty_applied": outcome.applied, "stabilized": stabilized, "due_today": len(due_today)},
            **self._call_kwargs(),
        )
        return {
            "user_id": self.user_id,
            "date": current_day.isoformat(),
            "penalties": {**outcome.to_dict(), "stabilized": stabilized},
            "due_today": len(due_today),
            "status": service.get_status(self.user_id, **self._call_kwargs()),
            "messages": service.list_messages(self.user_id),
        }

    def status(self) -> dict[str, Any] | None:
        return self.service.get_status(self.user_id, **self._call_kwargs())

    def quests(self, due_date: date | None = None) -> list[dict[str, Any]]:
        return self.service.list_quests(self.user_id, due_date=due_date)

    def add_quest(self, title: str, description: str = "", **fields: Any) -> dict[str, Any]:
        return self.service.add_quest(self.user_id, title, description, **fields, **self._call_kwargs())

    def add_plan(self, plan_text: str, today: date | None = None) -> list[dict[str, Any]]:
        return self.service.add_plan(self.user_id, plan_text, today=today, **self._call_kwargs())

    def complete_quest(self, quest_id: str, today: date | None = None) -> dict[str, Any] | None:
        return self.service.complete_quest(self.user_id, quest_id, today=today, **self._call_kwargs())

    def list_messages(self) -> list[dict[str, Any]]:
        return self.service.list_messages(self.user_id)
