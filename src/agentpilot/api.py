"""FastAPI service."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from agentpilot.config import RunConfig, Settings
from agentpilot.controller import AgentController, AgentResponse
from agentpilot.failures import (
    CheckpointError,
    CheckpointNotFoundError,
    InvalidModeError,
    InvalidTransitionError,
    SessionNotFoundError,
)
from agentpilot.factory import build_controller
from agentpilot.interaction import BlockerRecord, Checkpoint, HumanInput, ProgressCommunication


class RunRequest(BaseModel):
    query: str
    session_id: str | None = None
    config: RunConfig = Field(default_factory=RunConfig)


class ModeRequest(BaseModel):
    mode: str


class AutonomyRequest(BaseModel):
    operation_mode: str | None = None
    thresholds: dict[str, Any] = Field(default_factory=dict)
    human_interaction: dict[str, bool] = Field(default_factory=dict)


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


def create_app(controller: AgentController | None = None) -> FastAPI:
    app = FastAPI(title="AgentPilot")
    app.state.controller = controller or build_controller(Settings())

    @app.exception_handler(CheckpointNotFoundError)
    @app.exception_handler(SessionNotFoundError)
    async def not_found(request: Request, exc: Exception) -> JSONResponse:
        return _error(404, exc)

    @app.exception_handler(CheckpointError)
    @app.exception_handler(InvalidTransitionError)
    async def conflict(request: Request, exc: Exception) -> JSONResponse:
        return _error(409, exc)

    @app.exception_handler(InvalidModeError)
    @app.exception_handler(ValueError)
    async def bad_request(request: Request, exc: Exception) -> JSONResponse:
        return _error(400, exc)

    def current() -> AgentController:
        return app.state.controller

    @app.post("/run", response_model=AgentResponse)
    def run_query(request: RunRequest) -> AgentResponse:
        return current().process_query(request.query, request.config, session_id=request.session_id)

    @app.post("/checkpoints/{checkpoint_id}/resolve", response_model=AgentResponse)
    def resolve_checkpoint(checkpoint_id: str, human_input: HumanInput) -> AgentResponse:
        return current().resume_after_human_input(checkpoint_id, human_input)

    @app.get("/checkpoints", response_model=list[Checkpoint])
    def pending_checkpoints(session_id: str | None = None) -> list[Checkpoint]:
        return current().get_pending_checkpoints(session_id)

    @app.get("/blockers", response_model=list[BlockerRecord])
    def active_blockers(session_id: str | None = None) -> list[BlockerRecord]:
        return current().get_active_blockers(session_id)

    @app.get("/progress", response_model=ProgressCommunication)
    def progress(session_id: str | None = None) -> ProgressCommunication:
        return current().get_progress_communication(session_id)

    @app.post("/sessions/{session_id}/cancel", response_model=AgentResponse)
    def cancel(session_id: str) -> AgentResponse:
        return current().cancel(session_id)

    @app.post("/mode")
    def set_mode(request: ModeRequest) -> dict[str, str]:
        current().set_operation_mode(request.mode)
        return {"operation_mode": request.mode}

    @app.post("/autonomy")
    def configure_autonomy(request: AutonomyRequest) -> dict[str, Any]:
        return current().configure_autonomous_operation(request.model_dump(exclude_none=True))

    return app


app = create_app()
