from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from pathlib import Path
from uuid import uuid4

import uvicorn

from .api import create_app
from .classifier import classify
from .ranks import rank_table
from .records import QuestValidationError, parse_day
from .security import mask_email
from .service import ProgressionService
from .session import SessionContext


def _service() -> ProgressionService:
    return ProgressionService.create()


def _print(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _resolve_user_id(service: ProgressionService, explicit: str | None) -> str | None:
    if explicit:
        user = service.find_user(explicit)
        return user["id"] if user else None
    return service.current_user_id()


def _print_quests(quests: list[dict]) -> None:
    if not quests:
        print("No quests.")
        return
    for quest in quests:
        mark = "x" if quest.get("completed") else " "
        print(f"[{mark}] {quest.get('id')} :: {quest.get('title')} ({quest.get('priority')}, +{quest.get('xp')} XP, due {quest.get('due_date')})")


def _cli_day(value: str | None) -> date | None:
    if not value:
        return None
    parsed = parse_day(value)
    if parsed is None:
        raise ValueError(f"not a calendar date: {value!r} (use YYYY-MM-DD)")
    return parsed


def _read_plan_text(args: argparse.Namespace) -> str:
    if args.file:
        return Path(args.file).read_text(encoding="utf-8")
    return sys.stdin.read()


def main() -> int:
    parser = argparse.ArgumentParser(description="Arcane progression engine CLI")
    parser.add_argument("--user", default=None, help="User id, username or email (defaults to the logged-in user)")
    sub = parser.add_subparsers(dest="command", required=True)

    user_cmd = sub.add_parser("user", help="Local user records")
    user_sub = user_cmd.add_subparsers(dest="user_command", required=True)
    user_create = user_sub.add_parser("create", help="Create a user")
    user_create.add_argument("username")
    user_create.add_argument("email")
    user_sub.add_parser("list", help="List users")

    login_cmd = sub.add_parser("login", help="Select the active user")
    login_cmd.add_argument("identifier", help="Username or email")
    sub.add_parser("logout", help="Forget the active user")
    sub.add_parser("whoami", help="Show the active user")

    start_cmd = sub.add_parser("start", help="Run the session-start penalty and stabilization checks")
    start_cmd.add_argument("--date", default=None, help="Override today (YYYY-MM-DD)")
    sub.add_parser("status", help="Show level, rank and penalty state")
    sub.add_parser("profile", help="Show quest statistics")

    quest_cmd = sub.add_parser("quest", help="Quest operations")
    quest_sub = quest_cmd.add_subparsers(dest="quest_command", required=True)
    quest_add = quest_sub.add_parser("add", help="Add a quest")
    quest_add.add_argument("title")
    quest_add.add_argument("--description", default="")
    quest_add.add_argument("--due", default=None, help="Due date YYYY-MM-DD (default today)")
    quest_add.add_argument("--recurring", action="store_true")
    quest_add.add_argument("--day", type=int, action="append", default=None, help="Recurring weekday 0-6 (repeatable)")
    quest_list = quest_sub.add_parser("list", help="List quests")
    quest_list.add_argument("--due", default=None, help="Only quests due on YYYY-MM-DD")
    quest_list.add_argument("--today", action="store_true", help="Only quests due today")
    quest_edit = quest_sub.add_parser("edit", help="Edit a quest")
    quest_edit.add_argument("quest_id")
    quest_edit.add_argument("--title", default=None)
    quest_edit.add_argument("--description", default=None)
    quest_edit.add_argument("--due", default=None)
    quest_rm = quest_sub.add_parser("rm", help="Delete a quest")
    quest_rm.add_argument("quest_id")
    quest_done = quest_sub.add_parser("done", help="Complete a quest")
    quest_done.add_argument("quest_id")

    plan_cmd = sub.add_parser("plan", help="Import a free-form plan (one quest per line)")
    plan_cmd.add_argument("--file", default=None, help="Plan text file (default: stdin)")
    plan_cmd.add_argument("--preview", action="store_true", help="Parse only, do not store")

    messages_cmd = sub.add_parser("messages", help="Show system messages")
    messages_cmd.add_argument("--clear", action="store_true")

    calendar_cmd = sub.add_parser("calendar", help="Month overview")
    calendar_cmd.add_argument("--month", default=None, help="YYYY-MM (default: current month)")

    sub.add_parser("ranks", help="Print the rank ladder")
    classify_cmd = sub.add_parser("classify", help="Preview priority and XP for a quest text")
    classify_cmd.add_argument("title")
    classify_cmd.add_argument("--description", default="")

    api_cmd = sub.add_parser("api", help="Run local API server")
    api_cmd.add_argument("--host", default="127.0.0.1")
    api_cmd.add_argument("--port", type=int, default=8000)

    telemetry_cmd = sub.add_parser("telemetry", help="Telemetry operations")
    telemetry_sub = telemetry_cmd.add_subparsers(dest="telemetry_command", required=True)
    telemetry_sub.add_parser("status", help="Show telemetry status")
    telemetry_export = telemetry_sub.add_parser("export", help="Export aggregated telemetry summary")
    telemetry_export.add_argument("--range", default="7d", help="Range window like 7d or 24h")
    telemetry_export.add_argument("--out", default=None, help="Optional output JSON path")
    telemetry_purge = telemetry_sub.add_parser("purge", help="Purge events older than a range")
    telemetry_purge.add_argument("--older-than", default=None, help="Range like 30d or 720h")

    args = parser.parse_args()

    if args.command == "ranks":
        _print(rank_table())
        return 0
    if args.command == "classify":
        _print(classify(args.title, args.description))
        return 0

    service = _service()
    trace_id = f"cli:{uuid4()}"

    if args.command == "user":
        if args.user_command == "create":
            try:
                user = service.create_user(args.username, args.email, source="cli", trace_id=trace_id)
            except ValueError as exc:
                print(f"error: {exc}", file=sys.stderr)
                return 1
            _print({"id": user["id"], "username": user["username"], "email": mask_email(user["email"])})
            return 0
        if args.user_command == "list":
            _print([{"id": u["id"], "username": u["username"], "level": u["level"]} for u in service.list_users()])
            return 0

    if args.command == "login":
        user = service.login(args.identifier)
        if user is None:
            print("error: no such user", file=sys.stderr)
            return 1
        _print({"id": user["id"], "username": user["username"]})
        return 0
    if args.command == "logout":
        _print({"logged_out": service.logout()})
        return 0

    if args.command == "plan" and args.preview:
        from .planner import parse_plan_into_quests

        _print(parse_plan_into_quests(_read_plan_text(args), today=service.today()))
        return 0

    if args.command == "telemetry":
        if args.telemetry_command == "status":
            _print(service.telemetry_status())
            return 0
        if args.telemetry_command == "export":
            _print(service.telemetry_export(args.range, Path(args.out) if args.out else None))
            return 0
        if args.telemetry_command == "purge":
            _print(service.telemetry_purge(args.older_than))
            return 0

    if args.command == "api":
        app = create_app(service)
        uvicorn.run(app, host=args.host, port=args.port, log_level="info")
        return 0

    user_id = _resolve_user_id(service, args.user)
    if user_id is None:
        print("error: no active user; run `arcane login <username>` or pass --user", file=sys.stderr)
        return 1
    session = SessionContext(service, user_id, source="cli", trace_id=trace_id)

    if args.command == "whoami":
        user = session.user()
        _print({"id": user_id, "username": user["username"] if user else None})
        return 0

    if args.command == "start":
        try:
            start_day = _cli_day(args.date)
        except ValueError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
        _print(session.start(start_day))
        return 0

    if args.command == "status":
        _print(session.status())
        return 0

    if args.command == "profile":
        _print(service.get_profile_stats(user_id))
        return 0

    if args.command == "quest":
        try:
            if args.quest_command == "add":
                _print(
                    session.add_quest(
                        args.title,
                        args.description,
                        due_date=args.due,
                        recurring=args.recurring or bool(args.day),
                        recurring_days=args.day,
                    )
                )
                return 0
            if args.quest_command == "list":
                due = _cli_day(args.due) if args.due else (service.today() if args.today else None)
                _print_quests(session.quests(due))
                return 0
            if args.quest_command == "edit":
                updates = {
                    key: value
                    for key, value in {
                        "title": args.title,
                        "description": args.description,
                        "due_date": args.due,
                    }.items()
                    if value is not None
                }
                result = service.update_quest(user_id, args.quest_id, updates, source="cli", trace_id=trace_id)
            elif args.quest_command == "rm":
                result = service.delete_quest(user_id, args.quest_id, source="cli", trace_id=trace_id)
            else:
                result = session.complete_quest(args.quest_id)
        except QuestValidationError as exc:
            _print(exc.to_dict())
            return 1
        except ValueError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
        if result is None:
            print("error: quest not found", file=sys.stderr)
            return 1
        _print(result)
        return 0

    if args.command == "plan":
        _print(session.add_plan(_read_plan_text(args)))
        return 0

    if args.command == "messages":
        if args.clear:
            _print({"removed": service.clear_messages(user_id, source="cli", trace_id=trace_id)})
            return 0
        for message in session.list_messages():
            print(f"{message.get('timestamp')} [{message.get('type')}] {message.get('message')}")
        return 0

    if args.command == "calendar":
        year_text, _, month_text = (args.month or service.today().strftime("%Y-%m")).partition("-")
        try:
            rows = service.calendar_month(user_id, int(year_text), int(month_text))
        except ValueError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
        _print(rows)
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
