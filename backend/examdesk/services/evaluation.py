"""Evaluation console: manual scoring of free-text answers."""

from decimal import Decimal
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from examdesk.common.timing import utcnow
from examdesk.core.app_exceptions import raise_app_error
from examdesk.core.logging import get_logger
from examdesk.models.attempt import Answer, Attempt, AttemptStatus, can_transition
from examdesk.models.exam import Exam
from examdesk.models.user import User
from examdesk.schemas.evaluation import (
    EvaluationAnswerOut,
    EvaluationDetailOut,
    EvaluationResultOut,
    EvaluationSubmit,
    PendingEvaluationOut,
)
from examdesk.services.telemetry import EventType, log_event

logger = get_logger(__name__)

# Statuses an evaluator may score (evaluated allows re-evaluation)
EVALUABLE_STATUSES = frozenset({AttemptStatus.COMPLETED, AttemptStatus.EVALUATED})


class EvaluationError(Exception):
    """Evaluation cannot be applied to the attempt in its current state."""

    def __init__(self, code: str, detail: str):
        self.code = code
        self.detail = detail
        super().__init__(detail)


def list_pending(db: Session) -> list[PendingEvaluationOut]:
    """Completed attempts with at least one answer awaiting manual scoring."""
    pending_count = func.count(Answer.id).label("pending_answers")
    stmt = (
        select(Attempt, Exam, User, pending_count)
        .join(Answer, Answer.attempt_id == Attempt.id)
        .join(Exam, Exam.id == Attempt.exam_id)
        .join(User, User.id == Attempt.user_id)
        .where(
            Attempt.status == AttemptStatus.COMPLETED,
            Answer.needs_evaluation.is_(True),
        )
        .group_by(Attempt.id, Exam.id, User.id)
        .order_by(Attempt.submitted_at)
    )

    return [
        PendingEvaluationOut(
            attempt_id=attempt.id,
            exam_id=exam.id,
            exam_title=exam.title,
            user_id=user.id,
            user_name=user.name,
            status=attempt.status,
            submitted_at=attempt.submitted_at,
            total_score=float(attempt.total_score or 0),
            pending_answers=count,
        )
        for attempt, exam, user, count in db.execute(stmt).all()
    ]


def _get_evaluable_attempt(db: Session, attempt_id: UUID) -> Attempt:
    attempt = db.get(Attempt, attempt_id)
    if attempt is None:
        raise_app_error(status.HTTP_404_NOT_FOUND, "NOT_FOUND", "Attempt not found")
    return attempt


def get_evaluation_detail(db: Session, attempt_id: UUID) -> EvaluationDetailOut:
    """Every answer of an attempt with the answer key, for an evaluator."""
    attempt = _get_evaluable_attempt(db, attempt_id)
    stmt = select(Answer).where(Answer.attempt_id == attempt.id)
    answers = sorted(
        db.execute(stmt).scalars().all(),
        key=lambda a: a.question.order_number,
    )

    return EvaluationDetailOut(
        attempt_id=attempt.id,
        exam_id=attempt.exam_id,
        exam_title=attempt.exam.title,
        user_id=attempt.user_id,
        status=attempt.status,
        total_score=float(attempt.total_score or 0),
        answers=[
            EvaluationAnswerOut(
                answer_id=a.id,
                question_id=a.question_id,
                question_text=a.question.text,
                question_type=a.question.type.value,
                options=list(a.question.options or []),
                correct_answer=a.question.correct_answer,
                answer_text=a.answer_text,
                is_correct=a.is_correct,
                score_awarded=float(a.score_awarded) if a.score_awarded is not None else None,
                max_score=a.question.marks,
                needs_evaluation=a.needs_evaluation,
            )
            for a in answers
        ],
    )


def submit_evaluation(
    db: Session,
    attempt_id: UUID,
    payload: EvaluationSubmit,
    evaluator: User,
) -> EvaluationResultOut:
    """
    Apply evaluator scores and recompute the attempt total.

    The total is the sum of score_awarded over all answers of the attempt, so objective
    scores from auto-grading are kept and manual scores are added on top.

    Raises:
        EvaluationError: attempt not in an evaluable status
        AppError: 404 for a missing attempt, 422 for foreign answers or out-of-range scores
    """
    attempt = _get_evaluable_attempt(db, attempt_id)
    if attempt.status not in EVALUABLE_STATUSES:
        raise EvaluationError(
            "INVALID_TRANSITION",
            f"Cannot evaluate attempt with status {attempt.status.value}",
        )

    answers = {
        a.id: a
        for a in db.execute(select(Answer).where(Answer.attempt_id == attempt.id)).scalars()
    }

    details: list[dict[str, str]] = []
    for index, item in enumerate(payload.evaluations):
        field = f"body.evaluations.{index}"
        answer = answers.get(item.answer_id)
        if answer is None:
            details.append(
                {"field": f"{field}.answer_id", "issue": "Answer does not belong to this attempt"}
            )
            continue
        if item.score_awarded > answer.question.marks:
            details.append(
                {
                    "field": f"{field}.score_awarded",
                    "issue": f"Score must be between 0 and {answer.question.marks}",
                }
            )
    if details:
        raise_app_error(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR",
            "Invalid evaluation data",
            details,
        )

    now = utcnow()
    for item in payload.evaluations:
        answer = answers[item.answer_id]
        answer.score_awarded = Decimal(str(item.score_awarded))
        answer.is_correct = item.is_correct
        answer.needs_evaluation = False
        answer.evaluated_by = evaluator.id
        answer.evaluated_at = now

    total = sum((a.score_awarded or Decimal(0) for a in answers.values()), Decimal(0))
    attempt.total_score = total
    if attempt.status != AttemptStatus.EVALUATED and can_transition(
        attempt.status, AttemptStatus.EVALUATED
    ):
        attempt.status = AttemptStatus.EVALUATED
    attempt.evaluated_by = evaluator.id
    attempt.evaluated_at = now

    log_event(
        db,
        attempt.id,
        evaluator.id,
        EventType.ATTEMPT_EVALUATED,
        {"total_score": float(total), "evaluated_answers": len(payload.evaluations)},
    )
    db.commit()
    db.refresh(attempt)

    logger.info(
        "Attempt evaluated",
        extra={"attempt_id": str(attempt.id), "total_score": float(total)},
    )
    return EvaluationResultOut(
        attempt_id=attempt.id,
        status=attempt.status,
        total_score=float(total),
        evaluated_answers=len(payload.evaluations),
    )
