from __future__ import annotations

"""HTTP API surface for a local presentation layer."""

from datetime import date
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .classifier import classify
from .planner import parse_plan_into_quests
from .ranks import rank_table
from .records import QuestValidationError
from .service import ProgressionService
from .session import SessionContext


class UserRequest(BaseModel):
    username: str = Field(min_length=1, max_length=40)
    email: str = Field(min_length=3, max_length=200)


class ClassifyRequest(BaseModel):
    title: str = ""
    description: str = ""


class PlanRequest(BaseModel):
    """Free-form plan text, one quest per line."""

    text: str = Field(default="", max_length=20000)


class QuestRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    due_date: str | None = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    recurring: bool = False
    recurring_days: list[int] | None = None
    is_daily: bool | None = None


class QuestUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    due_date: str | None = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    recurring: bool | None = None
    recurring_days: list[int] | None = None
    is_daily: bool | None = None


def create_app(service: ProgressionService) -> FastAPI:
    """Create API routes backed by `ProgressionService` with per-request trace ids."""

    app = FastAPI(title="Arcane Engine API", version="0.1")

    @app.middleware("http")
    async def trace_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        incoming = (request.headers.get("x-arcane-trace-id") or "").strip()
        trace_id = incoming[:128] if incoming else f"api:{uuid4()}"
        request.state.trace_id = trace_id
        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001
            service.telemetry.log_event(
                "risk.flagged",
                source="api",
                trace_id=trace_id,
                data={
                    "reason": "api_internal_error",
                    "endpoint": request.url.path,
                    "error_type": exc.__class__.__name__,
                },
            )
            response = JSONResponse(
                status_code=500,
                content={"code": "INTERNAL_SERVER_ERROR", "message": "Internal server error", "trace_id": trace_id},
            )
        response.headers["X-Arcane-Trace-Id"] = trace_id
        return response

    def request_trace_id(request: Request) -> str:
        value = getattr(request.state, "trace_id", None)
        if isinstance(value, str) and value:
            return value
        return f"api:{uuid4()}"

    def require_user(user_id: str) -> None:
        if service.get_user(user_id) is None:
            raise HTTPException(status_code=404, detail="User not found")

    @app.get("/v1/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", "version": "0.1", "today": service.today().isoformat()}

    @app.get("/v1/ranks")
    def ranks() -> list[dict[str, Any]]:
        return rank_table()

    @app.post("/v1/classify")
    def classify_text(request: ClassifyRequest) -> dict[str, Any]:
        return classify(request.title, request.description)

    @app.post("/v1/plans/parse")
    def parse_plan(request: PlanRequest) -> list[dict[str, Any]]:
        return parse_plan_into_quests(request.text, today=service.today())

    @app.post("/v1/users", status_code=201)
    def create_user(request: UserRequest, http_request: Request) -> dict[str, Any]:
        try:
            return service.create_user(
                request.username,
                request.email,
                source="api",
                trace_id=request_trace_id(http_request),
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get("/v1/users/{user_id}")
    def get_user(user_id: str) -> dict[str, Any]:
        user = service.get_user(user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return user

    @app.get("/v1/users/{user_id}/status")
    def get_status(user_id: str, request: Request) -> dict[str, Any]:
        status = service.get_status(user_id, source="api", trace_id=request_trace_id(request))
        if status is None:
            raise HTTPException(status_code=404, detail="User not found")
        return status

    @app.get("/v1/users/{user_id}/profile")
    def get_profile(user_id: str) -> dict[str, Any]:
        stats = service.get_profile_stats(user_id)
        if stats is None:
            raise HTTPException(status_code=404, detail="User not found")
        return stats

    @app.post("/v1/users/{user_id}/session/start")
    def start_session(user_id: str, request: Request) -> dict[str, Any]:
        session = SessionContext(service, user_id, source="api", trace_id=request_trace_id(request))
        result = session.start()
        if result is None:
            raise HTTPException(status_code=404, detail="User not found")
        return result

    @app.post("/v1/users/{user_id}/penalties/check")
    def penalty_check(user_id: str, request: Request) -> dict[str, Any]:
        return service.run_penalty_check(user_id, source="api", trace_id=request_trace_id(request)).to_dict()

    @app.post("/v1/users/{user_id}/stabilize")
    def stabilize(user_id: str, request: Request) -> dict[str, Any]:
        require_user(user_id)
        return {"stabilized": service.try_stabilize(user_id, source="api", trace_id=request_trace_id(request))}

    @app.get("/v1/users/{user_id}/quests")
    def list_quests(
        user_id: str,
        due_date: str | None = Query(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    ) -> list[dict[str, Any]]:
        require_user(user_id)
        try:
            target = date.fromisoformat(due_date) if due_date else None
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return service.list_quests(user_id, due_date=target)

    @app.post("/v1/users/{user_id}/quests", status_code=201)
    def add_quest(user_id: str, request: QuestRequest, http_request: Request) -> Any:
        try:
            return service.add_quest(
                user_id,
                request.title,
                request.description,
                due_date=request.due_date,
                recurring=request.recurring,
                recurring_days=request.recurring_days,
                is_daily=request.is_daily,
                source="api",
                trace_id=request_trace_id(http_request),
            )
        except QuestValidationError as exc:
            return JSONResponse(status_code=400, content=exc.to_dict())
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc

    @app.post("/v1/users/{user_id}/quests/plan", status_code=201)
    def add_plan(user_id: str, request: PlanRequest, http_request: Request) -> list[dict[str, Any]]:
        try:
            return service.add_plan(user_id, request.text, source="api", trace_id=request_trace_id(http_request))
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc

    @app.patch("/v1/users/{user_id}/quests/{quest_id}")
    def update_quest(user_id: str, quest_id: str, request: QuestUpdateRequest, http_request: Request) -> Any:
        updates = request.model_dump(exclude_unset=True)
        try:
            quest = service.update_quest(
                user_id,
                quest_id,
                updates,
                source="api",
                trace_id=request_trace_id(http_request),
            )
        except QuestValidationError as exc:
            return JSONResponse(status_code=400, content=exc.to_dict())
        if quest is None:
            raise HTTPException(status_code=404, detail="Quest not found")
        return quest

    @app.delete("/v1/users/{user_id}/quests/{quest_id}")
    def delete_quest(user_id: str, quest_id: str, request: Request) -> dict[str, Any]:
        removed = service.delete_quest(user_id, quest_id, source="api", trace_id=request_trace_id(request))
        if removed is None:
            raise HTTPException(status_code=404, detail="Quest not found")
        return removed

    @app.post("/v1/users/{user_id}/quests/{quest_id}/complete")
    def complete_quest(user_id: str, quest_id: str, request: Request) -> dict[str, Any]:
        result = service.complete_quest(user_id, quest_id, source="api", trace_id=request_trace_id(request))
        if result is None:
            raise HTTPException(status_code=404, detail="Quest not found")
        return result

    @app.get("/v1/users/{user_id}/messages")
    def list_messages(user_id: str) -> list[dict[str, Any]]:
        require_user(user_id)
        return service.list_messages(user_id)

    @app.delete("/v1/users/{user_id}/messages")
    def clear_messages(user_id: str, request: Request) -> dict[str, Any]:
        require_user(user_id)
        return {"removed": service.clear_messages(user_id, source="api", trace_id=request_trace_id(request))}

    @app.get("/v1/users/{user_id}/calendar")
    def calendar_month(user_id: str, month: str = Query(..., pattern=r"^\d{4}-\d{2}$")) -> list[dict[str, Any]]:
        year_text, month_text = month.split("-", 1)
        try:
            rows = service.calendar_month(user_id, int(year_text), int(month_text))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if rows is None:
            raise HTTPException(status_code=404, detail="User not found")
        return rows

    return app
