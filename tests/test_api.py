from __future__ import annotations

import json
from pathlib import Path

from fastapi.testclient import TestClient

from arcane_engine.api import create_app
from arcane_engine.service import ProgressionService


def _service_and_client(tmp_path: Path) -> tuple[ProgressionService, TestClient]:
    service = ProgressionService.create(tmp_path / "home")
    return service, TestClient(create_app(service))


def _events(tmp_path: Path) -> list[dict]:
    events_path = tmp_path / "home" / "telemetry" / "events.jsonl"
    if not events_path.exists():
        return []
    return [json.loads(line) for line in events_path.read_text(encoding="utf-8").splitlines() if line.strip()]


def _create_user(client: TestClient) -> str:
    response = client.post("/v1/users", json={"username": "ada", "email": "ada@example.com"})
    assert response.status_code == 201
    return response.json()["id"]


def test_health_and_ranks(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    assert client.get("/v1/health").json()["status"] == "ok"
    ranks = client.get("/v1/ranks").json()
    assert ranks[0]["name"] == "Null"
    assert ranks[-1]["max_xp"] is None


def test_classify_and_plan_preview(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    assert client.post("/v1/classify", json={"title": "Maybe watch a film"}).json() == {"priority": "low", "xp": 10}
    drafts = client.post("/v1/plans/parse", json={"text": "1. Submit essay\n2. Chores"}).json()
    assert [draft["title"] for draft in drafts] == ["Submit essay", "Chores"]


def test_duplicate_user_is_rejected(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    _create_user(client)
    response = client.post("/v1/users", json={"username": "Ada", "email": "x@example.com"})
    assert response.status_code == 400


def test_quest_lifecycle(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    user_id = _create_user(client)

    created = client.post(f"/v1/users/{user_id}/quests", json={"title": "Exam prep"})
    assert created.status_code == 201
    quest = created.json()
    assert quest["priority"] == "high"
    assert quest["xp"] == 50

    listed = client.get(f"/v1/users/{user_id}/quests", params={"due_date": quest["due_date"]})
    assert [item["id"] for item in listed.json()] == [quest["id"]]

    patched = client.patch(f"/v1/users/{user_id}/quests/{quest['id']}", json={"description": "chapters 1-3"})
    assert patched.status_code == 200
    assert patched.json()["description"] == "chapters 1-3"
    assert patched.json()["xp"] == 50

    done = client.post(f"/v1/users/{user_id}/quests/{quest['id']}/complete")
    assert done.status_code == 200
    assert done.json()["xp_awarded"] == 50
    assert done.json()["xp"] == 50

    status = client.get(f"/v1/users/{user_id}/status").json()
    assert status["xp"] == 50
    assert status["rank"]["name"] == "Null"
    assert status["progress"]["percentage"] == 50.0

    deleted = client.delete(f"/v1/users/{user_id}/quests/{quest['id']}")
    assert deleted.status_code == 200
    assert client.delete(f"/v1/users/{user_id}/quests/{quest['id']}").status_code == 404


def test_quest_validation_errors(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    user_id = _create_user(client)
    bad_days = client.post(f"/v1/users/{user_id}/quests", json={"title": "Gym", "recurring_days": [9]})
    assert bad_days.status_code == 400
    assert bad_days.json()["code"] == "INVALID_RECURRING_DAYS"

    bad_date = client.post(f"/v1/users/{user_id}/quests", json={"title": "Gym", "due_date": "2026-13-01"})
    assert bad_date.status_code == 400
    assert bad_date.json()["code"] == "INVALID_DUE_DATE"

    malformed = client.post(f"/v1/users/{user_id}/quests", json={"title": "Gym", "due_date": "tomorrow"})
    assert malformed.status_code == 422


def test_unknown_user_and_quest_are_404(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    assert client.get("/v1/users/ghost/status").status_code == 404
    assert client.post("/v1/users/ghost/quests", json={"title": "Gym"}).status_code == 404
    assert client.post("/v1/users/ghost/session/start").status_code == 404
    user_id = _create_user(client)
    assert client.post(f"/v1/users/{user_id}/quests/nope/complete").status_code == 404


def test_plan_import_and_messages(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    user_id = _create_user(client)
    created = client.post(f"/v1/users/{user_id}/quests/plan", json={"text": "- Buy milk\n- Study maths"})
    assert created.status_code == 201
    assert len(created.json()) == 2

    log = client.get(f"/v1/users/{user_id}/messages").json()
    assert [item["message"] for item in log] == ["SYSTEM ASSIGNED +50 XP", "SYSTEM ASSIGNED +30 XP"]
    assert client.delete(f"/v1/users/{user_id}/messages").json() == {"removed": 2}


def test_session_start_and_calendar(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    user_id = _create_user(client)
    started = client.post(f"/v1/users/{user_id}/session/start")
    assert started.status_code == 200
    assert started.json()["penalties"]["xp_locked"] is False

    rows = client.get(f"/v1/users/{user_id}/calendar", params={"month": "2026-02"})
    assert rows.status_code == 200
    assert len(rows.json()) == 28
    assert client.get(f"/v1/users/{user_id}/calendar", params={"month": "2026-00"}).status_code == 400


def test_trace_id_header_round_trip(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    response = client.post(
        "/v1/users",
        json={"username": "ada", "email": "ada@example.com"},
        headers={"X-Arcane-Trace-Id": "ui:abc123"},
    )
    assert response.headers["X-Arcane-Trace-Id"] == "ui:abc123"
    created = [evt for evt in _events(tmp_path) if evt["event_type"] == "user.created"]
    assert created[0]["trace_id"] == "ui:abc123"
    assert created[0]["source"] == "api"

    generated = client.get("/v1/health")
    assert generated.headers["X-Arcane-Trace-Id"].startswith("api:")
