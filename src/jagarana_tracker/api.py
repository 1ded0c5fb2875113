from __future__ import annotations

"""HTTP API surface for one local tracker session."""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .errors import TrackerError
from .service import TrackerService
from .telemetry import sanitize_trace_id


class TapRequest(BaseModel):
    """One bead tap by zero-based index."""

    index: int


class StrictOrderRequest(BaseModel):
    enabled: bool


class ConfirmRequest(BaseModel):
    """Destructive operations require body confirm=true plus the confirm header."""

    confirm: bool = False


class DurationRequest(BaseModel):
    minutes: int = Field(ge=1, le=1440)


class StartTimerRequest(BaseModel):
    minutes: int | None = Field(default=None, ge=1, le=1440)


class QuizAnswerRequest(BaseModel):
    question_id: str = Field(min_length=1, max_length=64)
    selected_index: int


class CertificateRequest(BaseModel):
    name: str = Field(max_length=200)
    lineage: str = Field(default="", max_length=200)


class SoundRequest(BaseModel):
    enabled: bool


def create_app(service: TrackerService) -> FastAPI:
    """Create API routes backed by `TrackerService`.

    Handlers are coroutines so every mutation, and every timer tick scheduled on
    the loop, runs on the event-loop thread.
    """

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        service.arm_midnight()
        yield
        service.shutdown()

    app = FastAPI(title="Jagarana Tracker API", version="0.1", lifespan=lifespan)
    service.source = "api"

    @app.middleware("http")
    async def trace_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        incoming = (request.headers.get("x-jagarana-trace-id") or "").strip()
        trace_id = sanitize_trace_id(incoming) if incoming else f"api:{uuid4()}"
        if not trace_id:
            trace_id = f"api:{uuid4()}"
        request.state.trace_id = trace_id
        service.trace_id = trace_id
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
                content={
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": "Internal server error",
                    "trace_id": trace_id,
                },
            )
        finally:
            service.trace_id = None
        response.headers["X-Jagarana-Trace-Id"] = trace_id
        return response

    def require_confirm_header(request: Request, body: ConfirmRequest) -> None:
        header_confirm = (request.headers.get("x-jagarana-confirm") or "").strip().lower() == "true"
        if not (body.confirm and header_confirm):
            raise HTTPException(
                status_code=400,
                detail="This operation requires body confirm=true and header X-Jagarana-Confirm: true.",
            )

    @app.get("/v1/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "version": "0.1",
            "state_schema_version": service.record.schema_version,
            "storage_available": service.storage_available,
        }

    @app.get("/v1/state")
    async def get_state() -> dict[str, Any]:
        return service.snapshot()

    @app.post("/v1/beads/tap")
    async def tap_bead(request: TapRequest) -> dict[str, Any]:
        return service.tap_bead(request.index).to_dict()

    @app.post("/v1/beads/strict")
    async def set_strict(request: StrictOrderRequest) -> dict[str, Any]:
        enabled = service.set_strict_order(request.enabled)
        return {"strict_order": enabled, "next_expected": service.beads.next_expected}

    @app.post("/v1/beads/reset-round")
    async def reset_round(body: ConfirmRequest, request: Request) -> dict[str, Any]:
        require_confirm_header(request, body)
        changed = service.reset_round(confirm=True)
        return {"reset": changed, "round_count": service.record.round_count}

    @app.put("/v1/timer/duration")
    async def set_duration(request: DurationRequest) -> dict[str, Any]:
        try:
            changed = service.set_timer_duration(request.minutes)
        except TrackerError as exc:
            return JSONResponse(status_code=400, content=exc.to_dict())
        return {"changed": changed, **service.meditation.describe()}

    @app.post("/v1/timer/start")
    async def start_timer(request: StartTimerRequest) -> dict[str, Any]:
        try:
            started = service.start_timer(request.minutes)
        except TrackerError as exc:
            return JSONResponse(status_code=400, content=exc.to_dict())
        return {"started": started, **service.meditation.describe()}

    @app.post("/v1/timer/pause")
    async def pause_timer() -> dict[str, Any]:
        paused = service.pause_timer()
        return {"paused": paused, **service.meditation.describe()}

    @app.post("/v1/timer/reset")
    async def reset_timer() -> dict[str, Any]:
        service.reset_timer()
        return service.meditation.describe()

    @app.get("/v1/reflections/next")
    async def next_reflection() -> dict[str, Any]:
        return service.next_reflection()

    @app.get("/v1/quiz/next")
    async def next_question() -> dict[str, Any]:
        return service.next_question()

    @app.post("/v1/quiz/answer")
    async def answer_quiz(request: QuizAnswerRequest) -> dict[str, Any]:
        try:
            result = service.answer_quiz(request.question_id, request.selected_index)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {**result.to_dict(), "certificate": service.certificate_status()}

    @app.post("/v1/midnight/poll")
    async def poll_midnight() -> dict[str, Any]:
        fired = service.poll_midnight()
        return {"fired": fired, **service.midnight.describe()}

    @app.post("/v1/midnight/start")
    async def start_midnight() -> dict[str, Any]:
        started = service.start_midnight()
        return {"started": started, **service.midnight.describe()}

    @app.post("/v1/midnight/dismiss")
    async def dismiss_midnight() -> dict[str, Any]:
        dismissed = service.dismiss_midnight()
        return {"dismissed": dismissed, **service.midnight.describe()}

    @app.get("/v1/certificate")
    async def certificate_status() -> dict[str, Any]:
        return service.certificate_status()

    @app.post("/v1/certificate")
    async def issue_certificate(request: CertificateRequest) -> dict[str, Any]:
        try:
            return service.issue_certificate(request.name, request.lineage)
        except TrackerError as exc:
            return JSONResponse(status_code=400, content=exc.to_dict())

    @app.post("/v1/sound")
    async def set_sound(request: SoundRequest) -> dict[str, Any]:
        return {"sound_enabled": service.set_sound(request.enabled)}

    @app.post("/v1/progress/reset")
    async def reset_progress(body: ConfirmRequest, request: Request) -> dict[str, Any]:
        require_confirm_header(request, body)
        return service.reset_all_progress(confirm=True)

    @app.get("/v1/telemetry/summary")
    async def telemetry_summary(
        range: str = Query("7d", pattern=r"^\d+[dh]$"),
        session_only: bool = False,
    ) -> dict[str, Any]:
        try:
            return service.telemetry_summary(range, session_only=session_only)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    return app
