from __future__ import annotations

import os
from pathlib import Path


def arcane_home() -> Path:
    configured = os.environ.get("ARCANE_HOME")
    if configured:
        return Path(configured).expanduser().resolve()
    return Path.home() / ".arcane"


def ensure_home_dirs(base: Path) -> dict[str, Path]:
    users = base / "users"
    quests = base / "quests"
    messages = base / "messages"
    state = base / "state"
    telemetry = base / "telemetry"
    for path in (base, users, quests, messages, state, telemetry):
        path.mkdir(parents=True, exist_ok=True)
    return {
        "base": base,
        "users": users,
        "quests": quests,
        "messages": messages,
        "state": state,
        "telemetry": telemetry,
    }
