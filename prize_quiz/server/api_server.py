"""FastAPI server that exposes participant endpoints."""

from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field
import uvicorn

from prize_quiz.constants.about import APP_ABOUT_TEXT, APP_LICENSE, APP_NAME, APP_VERSION
from prize_quiz.constants.network_constants import DEFAULT_HOST, DEFAULT_LOG_LEVEL, DEFAULT_PORT
from prize_quiz.core.markdown_math_renderer import renderer
from prize_quiz.core.models import Question
from prize_quiz.core.services.record_store import StoreUnavailableError
from prize_quiz.core.submission_coordinator import (
    AlreadyAnsweredError,
    CoordinatorBusyError,
    SubmissionCoordinator,
    SubmissionRequest,
    SubmissionValidationError,
)

logger = logging.getLogger(__name__)


class CheckUserPayload(BaseModel):
    """Payload schema for the "already answered today?" lookup."""

    phone_hash: str = Field(default="", validation_alias=AliasChoices("phoneHash", "phone_hash"))
    id_hash: str = Field(default="", validation_alias=AliasChoices("idHash", "id_hash"))


class SubmitPayload(BaseModel):
    """Payload schema for a full quiz submission."""

    name: str = ""
    phone_hash: str = Field(default="", validation_alias=AliasChoices("phoneHash", "phone_hash"))
    id_hash: str = Field(default="", validation_alias=AliasChoices("idHash", "id_hash"))
    answers: dict[str, list[int]] = Field(default_factory=dict)


def _question_payload(question: Question) -> dict[str, object]:
    # The answer key never leaves the server.
    return {
        "id": question.id,
        "type": question.type,
        "question": question.prompt,
        "question_html": renderer.render_fragment(question.prompt),
        "options": list(question.options),
    }


def _get_coordinator_dependency(coordinator: SubmissionCoordinator):
    def dependency() -> SubmissionCoordinator:
        return coordinator

    return dependency


def create_api_app(coordinator: SubmissionCoordinator) -> FastAPI:
    """Create a FastAPI application wired to the provided submission coordinator."""
    app = FastAPI(
        title=f"{APP_NAME} API",
        version=APP_VERSION,
        description=APP_ABOUT_TEXT,
        license_info={"name": APP_LICENSE},
    )
    coordinator_dep = _get_coordinator_dependency(coordinator)

    @app.exception_handler(RequestValidationError)
    async def reject_malformed_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    @app.post("/api/check-user")
    def check_user(
        payload: CheckUserPayload,
        manager: SubmissionCoordinator = Depends(coordinator_dep),
    ) -> dict[str, bool]:
        try:
            answered = manager.has_answered_today(payload.phone_hash, payload.id_hash)
        except SubmissionValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except CoordinatorBusyError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except StoreUnavailableError as exc:
            logger.error("Dedupe lookup failed: %s", exc)
            raise HTTPException(status_code=500, detail="Record store unavailable.") from exc
        return {"answered": answered}

    @app.get("/api/questions")
    def get_questions(
        manager: SubmissionCoordinator = Depends(coordinator_dep),
    ) -> list[dict[str, object]]:
        try:
            questions = manager.deliver_questions()
        except CoordinatorBusyError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return [_question_payload(question) for question in questions]

    # Sync endpoint: it runs on a worker thread, so a client disconnect cannot
    # interrupt a submission that already entered the coordinator.
    @app.post("/api/submit")
    def submit(
        payload: SubmitPayload,
        manager: SubmissionCoordinator = Depends(coordinator_dep),
    ) -> dict[str, object]:
        request = SubmissionRequest(
            name=payload.name,
            phone_hash=payload.phone_hash,
            id_hash=payload.id_hash,
            answers=payload.answers,
        )
        try:
            result = manager.submit(request)
        except SubmissionValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except AlreadyAnsweredError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except CoordinatorBusyError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except StoreUnavailableError as exc:
            logger.error("Submission aborted: %s", exc)
            raise HTTPException(status_code=500, detail="Record store unavailable.") from exc
        return result.to_payload()

    @app.get("/api/status")
    def get_status(manager: SubmissionCoordinator = Depends(coordinator_dep)) -> dict[str, object]:
        try:
            return manager.status().to_payload()
        except CoordinatorBusyError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc

    return app


def run_api_server(
    coordinator: SubmissionCoordinator,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    log_level: str = DEFAULT_LOG_LEVEL,
) -> None:
    """Serve the API in the foreground until interrupted."""
    app = create_api_app(coordinator)
    config = uvicorn.Config(app=app, host=host, port=port, log_level=log_level)
    server = uvicorn.Server(config)
    server.run()
