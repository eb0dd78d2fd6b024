"""Exam and question endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from examdesk.core.app_exceptions import raise_app_error
from examdesk.core.dependencies import get_current_user, require_grader
from examdesk.db.session import get_db
from examdesk.models.user import User
from examdesk.schemas.exam import (
    ExamCreate,
    ExamOut,
    ExamUpdate,
    QuestionCreate,
    QuestionOut,
    QuestionWithAnswerOut,
)
from examdesk.services import exam_admin
from examdesk.services.attempt_engine import (
    AttemptStateError,
    get_question_exam,
    get_visible_exam,
)
from examdesk.services.question_provider import list_questions, serialize_question

router = APIRouter()


def _locked(e: exam_admin.ExamLockedError) -> None:
    raise_app_error(status.HTTP_409_CONFLICT, "EXAM_LOCKED", e.detail)


@router.get("", response_model=list[ExamOut])
async def list_exams(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[ExamOut]:
    """List exams visible to the caller."""
    return [ExamOut.model_validate(e) for e in exam_admin.list_exams(db, current_user)]


@router.post("", response_model=ExamOut, status_code=status.HTTP_201_CREATED)
async def create_exam(
    payload: ExamCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_grader),
) -> ExamOut:
    return ExamOut.model_validate(exam_admin.create_exam(db, payload, current_user))


@router.get("/{exam_id}", response_model=ExamOut)
async def get_exam(
    exam_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ExamOut:
    return ExamOut.model_validate(get_visible_exam(db, exam_id, current_user))


@router.patch("/{exam_id}", response_model=ExamOut)
async def update_exam(
    exam_id: UUID,
    payload: ExamUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_grader),
) -> ExamOut:
    """Update an exam. Content is frozen once attempts exist."""
    exam = exam_admin.get_exam_or_404(db, exam_id)
    try:
        exam = exam_admin.update_exam(db, exam, payload)
    except exam_admin.ExamLockedError as e:
        _locked(e)
    return ExamOut.model_validate(exam)


@router.delete("/{exam_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_exam(
    exam_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_grader),
) -> Response:
    exam = exam_admin.get_exam_or_404(db, exam_id)
    try:
        exam_admin.delete_exam(db, exam)
    except exam_admin.ExamLockedError as e:
        _locked(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{exam_id}/questions",
    response_model=list[QuestionWithAnswerOut | QuestionOut],
    summary="List exam questions",
    description="Questions in authored order. The answer key is only included for grading roles.",
)
async def get_exam_questions(
    exam_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[QuestionOut]:
    try:
        exam = get_question_exam(db, exam_id, current_user)
    except AttemptStateError as e:
        raise_app_error(status.HTTP_409_CONFLICT, e.code, e.detail)
    return list_questions(db, exam, current_user.role)


@router.post(
    "/{exam_id}/questions",
    response_model=QuestionWithAnswerOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_question(
    exam_id: UUID,
    payload: QuestionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_grader),
) -> QuestionOut:
    exam = exam_admin.get_exam_or_404(db, exam_id)
    try:
        question = exam_admin.add_question(db, exam, payload)
    except exam_admin.ExamLockedError as e:
        _locked(e)
    return serialize_question(question, current_user.role)
