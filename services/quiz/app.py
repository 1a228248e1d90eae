"""FastAPI app for the Quiz Service:
- /quizzes/{quiz_id}/attempts: start (or resume) an attempt
- /attempts/{attempt_id}/answers/{question_id}: record one answer
- /attempts/{attempt_id}/submit: score the attempt (idempotent)
- /attempts/{attempt_id}/review: per-question review once scored
- /admin/attempts/expire-stale: close abandoned attempts
"""

from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from packages.common.config import get_settings
from packages.common.logging import configure_logging
from packages.common.tracing import trace_middleware
from packages.schemas.quiz import AttemptState, Result, ReviewPayload

from .bank import seed_repository
from .errors import (
    AttemptLimitExceeded,
    AttemptNotFoundError,
    AttemptNotScoredError,
    EmptyQuizError,
    InvalidStateError,
    MalformedAnswerError,
    QuizEngineError,
    QuizNotFoundError,
)
from .repo import build_repository
from .service import QuizService

app = FastAPI(title="Quiz Service", version="1.0.0")
app.middleware("http")(trace_middleware)

_STATUS: Dict[type, int] = {
    MalformedAnswerError: 422,
    EmptyQuizError: 422,
    InvalidStateError: 409,
    AttemptNotScoredError: 409,
    AttemptLimitExceeded: 403,
    QuizNotFoundError: 404,
    AttemptNotFoundError: 404,
}


@lru_cache()
def get_service() -> QuizService:
    """Build the process-wide service from settings (overridable in tests)."""
    s = get_settings()
    repo = build_repository(s.DATABASE_URL)
    if s.QUIZ_BANK_PATH:
        seed_repository(repo, s.QUIZ_BANK_PATH)
    return QuizService(repo, settings=s)


@app.on_event("startup")
async def _init() -> None:
    """Configure logging at application startup."""
    configure_logging(get_settings().LOG_LEVEL)


@app.exception_handler(QuizEngineError)
async def _engine_error(request: Request, exc: QuizEngineError) -> JSONResponse:
    status = next((code for cls, code in _STATUS.items() if isinstance(exc, cls)), 400)
    return JSONResponse(status_code=status, content={"error": type(exc).__name__, "detail": str(exc)})


class StartRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class AnswerRequest(BaseModel):
    answer: Any = None


class SubmitRequest(BaseModel):
    elapsed_seconds: Optional[float] = Field(default=None, ge=0)


class AttemptView(BaseModel):
    attempt_id: str
    quiz_id: str
    user_id: str
    state: AttemptState
    answers: Dict[str, Any]
    remaining_seconds: Optional[float] = None


def _view(service: QuizService, attempt_id: str) -> AttemptView:
    attempt = service.get_attempt(attempt_id)
    return AttemptView(
        attempt_id=attempt.id,
        quiz_id=attempt.quiz_id,
        user_id=attempt.user_id,
        state=attempt.state,
        answers=attempt.answers,
        remaining_seconds=service.remaining_seconds(attempt_id),
    )


@app.get("/healthz", tags=["infra"])
def healthz() -> dict[str, str]:
    return {"status": "ok", "env": get_settings().ENV}


@app.get("/metrics", tags=["infra"])
def metrics() -> PlainTextResponse:
    data = generate_latest()
    return PlainTextResponse(data.decode("utf-8"), media_type=CONTENT_TYPE_LATEST)


@app.post("/quizzes/{quiz_id}/attempts", response_model=AttemptView, status_code=201, tags=["attempts"])
def start_attempt(quiz_id: str, body: StartRequest, service: QuizService = Depends(get_service)) -> AttemptView:
    """Start a new attempt, or return the user's attempt that is still open."""
    session = service.start_attempt(quiz_id, body.user_id)
    return _view(service, session.attempt_id)


@app.get("/attempts/{attempt_id}", response_model=AttemptView, tags=["attempts"])
def get_attempt(attempt_id: str, service: QuizService = Depends(get_service)) -> AttemptView:
    return _view(service, attempt_id)


@app.put("/attempts/{attempt_id}/answers/{question_id}", tags=["attempts"])
def record_answer(
    attempt_id: str,
    question_id: str,
    body: AnswerRequest,
    service: QuizService = Depends(get_service),
) -> Dict[str, Any]:
    """Normalize and store one answer; returns the stored canonical form."""
    value = service.record_answer(attempt_id, question_id, body.answer)
    return {"question_id": question_id, "answer": value}


@app.post("/attempts/{attempt_id}/submit", response_model=Result, tags=["attempts"])
def submit(
    attempt_id: str,
    body: Optional[SubmitRequest] = None,
    service: QuizService = Depends(get_service),
) -> Result:
    """Score the attempt. Submitting again returns the same result."""
    return service.submit(attempt_id, body.elapsed_seconds if body else None)


@app.get("/attempts/{attempt_id}/review", response_model=ReviewPayload, tags=["attempts"])
def review(attempt_id: str, service: QuizService = Depends(get_service)) -> ReviewPayload:
    return service.review(attempt_id)


@app.post("/admin/attempts/expire-stale", tags=["admin"])
def expire_stale(service: QuizService = Depends(get_service)) -> Dict[str, int]:
    return {"expired": service.expire_stale()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("services.quiz.app:app", host="0.0.0.0", port=8000)
