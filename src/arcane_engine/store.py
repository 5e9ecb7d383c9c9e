from __future__ import annotations

"""Local JSON persistence for users, quests, and system messages."""

import json
import re
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any


RECORD_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def _load_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return default


def _save_json(path: Path, value: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.parent / f".{path.name}.tmp"
    payload = json.dumps(value, indent=2, ensure_ascii=False)
    for attempt in range(5):
        temp_path.write_text(payload, encoding="utf-8")
        try:
            temp_path.replace(path)
            return
        except PermissionError:
            if attempt == 4:
                raise
            # On Windows, AV/indexers can briefly lock newly-written temp files.
            time.sleep(0.02 * (attempt + 1))


class JsonStore:
    """One JSON document per user per collection, plus per-user transaction locks."""

    def __init__(self, dirs: dict[str, Path]) -> None:
        self.dirs = dirs
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def user_lock(self, user_id: str) -> Iterator[None]:
        """Serialize read-modify-write transactions for one stored user.

        Ids without a user record get no lock, so the lock map stays bounded by
        the number of real users.
        """

        path = self._path("users", user_id)
        if path is None or not path.exists():
            yield
            return
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.RLock()
        with lock:
            yield

    def _path(self, collection: str, user_id: str) -> Path | None:
        if not isinstance(user_id, str) or not RECORD_ID_PATTERN.match(user_id):
            return None
        return self.dirs[collection] / f"{user_id}.json"

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        path = self._path("users", user_id)
        if path is None:
            return None
        data = _load_json(path, None)
        if not isinstance(data, dict):
            return None
        return data

    def save_user(self, user: dict[str, Any]) -> None:
        path = self._path("users", str(user.get("id")))
        if path is None:
            raise ValueError("User record has no usable id.")
        _save_json(path, user)

    def list_users(self) -> list[dict[str, Any]]:
        users: list[dict[str, Any]] = []
        for path in sorted(self.dirs["users"].glob("*.json")):
            data = _load_json(path, None)
            if isinstance(data, dict):
                users.append(data)
        return users

    def get_quests(self, user_id: str) -> list[dict[str, Any]]:
        path = self._path("quests", user_id)
        if path is None:
            return []
        data = _load_json(path, [])
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    def save_quests(self, user_id: str, quests: list[dict[str, Any]]) -> None:
        path = self._path("quests", user_id)
        if path is None:
            raise ValueError(f"Invalid user id: {user_id!r}")
        _save_json(path, quests)

    def get_messages(self, user_id: str) -> list[dict[str, Any]]:
        path = self._path("messages", user_id)
        if path is None:
            return []
        data = _load_json(path, [])
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    def save_messages(self, user_id: str, messages: list[dict[str, Any]]) -> None:
        path = self._path("messages", user_id)
        if path is None:
            raise ValueError(f"Invalid user id: {user_id!r}")
        _save_json(path, messages)

    def clear_messages(self, user_id: str) -> None:
        path = self._path("messages", user_id)
        if path is not None and path.exists():
            path.unlink()

    def get_session(self) -> dict[str, Any]:
        data = _load_json(self.dirs["state"] / "session.json", {})
        return data if isinstance(data, dict) else {}

    def save_session(self, session: dict[str, Any]) -> None:
        _save_json(self.dirs["state"] / "session.json", session)

    def clear_session(self) -> None:
        path = self.dirs["state"] / "session.json"
        if path.exists():
            path.unlink()
