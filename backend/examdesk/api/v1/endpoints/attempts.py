"""Attempt lifecycle endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from examdesk.core.app_exceptions import raise_app_error
from examdesk.core.dependencies import get_current_user
from examdesk.db.session import get_db
from examdesk.models.attempt import AttemptStatus
from examdesk.models.user import User
from examdesk.schemas.attempt import (
    AnswerOut,
    AnswerSave,
    AnswerSaveResponse,
    AttemptListItem,
    AttemptOut,
    AttemptResultOut,
    AttemptStateOut,
    AttemptStatusUpdate,
    SubmitResponse,
)
from examdesk.services import attempt_engine
from examdesk.services.attempt_engine import AttemptStateError

router = APIRouter()

DbSession = Annotated[Session, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]


def _conflict(e: AttemptStateError) -> None:
    raise_app_error(status.HTTP_409_CONFLICT, e.code, e.detail)


@router.post(
    "/exams/{exam_id}/attempts",
    response_model=AttemptStateOut,
    status_code=status.HTTP_201_CREATED,
    summary="Start attempt",
    description="Start the caller's attempt. Returns the existing active attempt (200) if there is one.",
)
async def start_attempt(
    exam_id: UUID,
    response: Response,
    db: DbSession,
    current_user: CurrentUser,
) -> AttemptStateOut:
    try:
        attempt, created = attempt_engine.start_attempt(db, current_user, exam_id)
    except AttemptStateError as e:
        _conflict(e)
    if not created:
        response.status_code = status.HTTP_200_OK
    return attempt_engine.attempt_state(attempt)


@router.get(
    "/attempts",
    response_model=list[AttemptListItem],
    summary="List my attempts",
    description="The caller's attempts, newest first. Scores only when results are visible.",
)
async def list_attempts(
    db: DbSession,
    current_user: CurrentUser,
    status_filter: Annotated[AttemptStatus | None, Query(alias="status")] = None,
    exam_id: UUID | None = None,
) -> list[AttemptListItem]:
    return attempt_engine.list_user_attempts(db, current_user, status_filter, exam_id)


@router.get("/attempts/{attempt_id}", response_model=AttemptStateOut)
async def get_attempt(
    attempt_id: UUID,
    db: DbSession,
    current_user: CurrentUser,
) -> AttemptStateOut:
    """Attempt with exam summary and server-computed remaining time."""
    attempt = attempt_engine.get_user_attempt(db, attempt_id, current_user, allow_graders=True)
    attempt = attempt_engine.check_and_expire_attempt(db, attempt)
    return attempt_engine.attempt_state(attempt)


@router.put(
    "/attempts/{attempt_id}/answers/{question_id}",
    response_model=AnswerSaveResponse,
)
async def save_answer(
    attempt_id: UUID,
    question_id: UUID,
    payload: AnswerSave,
    db: DbSession,
    current_user: CurrentUser,
) -> AnswerSaveResponse:
    """Upsert the answer for one question (autosave target)."""
    attempt = attempt_engine.get_user_attempt(db, attempt_id, current_user)
    try:
        answer, applied = attempt_engine.save_answer(db, attempt, question_id, payload)
    except AttemptStateError as e:
        _conflict(e)
    return AnswerSaveResponse(
        answer=attempt_engine.answer_out(answer, show_grading=False),
        applied=applied,
        attempt_status=attempt.status,
    )


@router.get("/attempts/{attempt_id}/answers", response_model=list[AnswerOut])
async def list_answers(
    attempt_id: UUID,
    db: DbSession,
    current_user: CurrentUser,
) -> list[AnswerOut]:
    attempt = attempt_engine.get_user_attempt(db, attempt_id, current_user, allow_graders=True)
    return attempt_engine.list_answers(db, attempt, current_user)


@router.post("/attempts/{attempt_id}/submit", response_model=SubmitResponse)
async def submit_attempt(
    attempt_id: UUID,
    db: DbSession,
    current_user: CurrentUser,
) -> SubmitResponse:
    """Submit and auto-grade. Idempotent."""
    attempt = attempt_engine.get_user_attempt(db, attempt_id, current_user)
    try:
        return attempt_engine.submit_attempt(db, attempt)
    except AttemptStateError as e:
        _conflict(e)


@router.patch("/attempts/{attempt_id}/status", response_model=AttemptOut)
async def update_attempt_status(
    attempt_id: UUID,
    payload: AttemptStatusUpdate,
    db: DbSession,
    current_user: CurrentUser,
) -> AttemptOut:
    attempt = attempt_engine.get_user_attempt(db, attempt_id, current_user)
    try:
        attempt = attempt_engine.update_attempt_status(db, attempt, payload.status)
    except AttemptStateError as e:
        _conflict(e)
    return AttemptOut.model_validate(attempt)


@router.get("/attempts/{attempt_id}/result", response_model=AttemptResultOut)
async def get_attempt_result(
    attempt_id: UUID,
    db: DbSession,
    current_user: CurrentUser,
) -> AttemptResultOut:
    attempt = attempt_engine.get_user_attempt(db, attempt_id, current_user, allow_graders=True)
    try:
        return attempt_engine.attempt_result(db, attempt, current_user)
    except AttemptStateError as e:
        _conflict(e)
