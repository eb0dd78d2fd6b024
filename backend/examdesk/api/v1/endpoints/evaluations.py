"""Evaluation console endpoints (grading roles only)."""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from examdesk.core.app_exceptions import raise_app_error
from examdesk.core.dependencies import require_grader
from examdesk.db.session import get_db
from examdesk.models.user import User
from examdesk.schemas.evaluation import (
    EvaluationDetailOut,
    EvaluationResultOut,
    EvaluationSubmit,
    PendingEvaluationOut,
)
from examdesk.services import evaluation

router = APIRouter()


@router.get("", response_model=list[PendingEvaluationOut])
async def list_pending_evaluations(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_grader),
) -> list[PendingEvaluationOut]:
    """Completed attempts with free-text answers awaiting scores."""
    return evaluation.list_pending(db)


@router.get("/{attempt_id}", response_model=EvaluationDetailOut)
async def get_evaluation(
    attempt_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_grader),
) -> EvaluationDetailOut:
    return evaluation.get_evaluation_detail(db, attempt_id)


@router.post("/{attempt_id}", response_model=EvaluationResultOut)
async def submit_evaluation(
    attempt_id: UUID,
    payload: EvaluationSubmit,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_grader),
) -> EvaluationResultOut:
    """Score answers and recompute the attempt total (status -> evaluated)."""
    try:
        return evaluation.submit_evaluation(db, attempt_id, payload, current_user)
    except evaluation.EvaluationError as e:
        raise_app_error(status.HTTP_409_CONFLICT, e.code, e.detail)
