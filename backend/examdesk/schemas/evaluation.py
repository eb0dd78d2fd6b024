"""Pydantic schemas for the evaluation console."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from examdesk.models.attempt import AttemptStatus


class EvaluationItem(BaseModel):
    """Score for one answer."""

    answer_id: UUID
    score_awarded: float = Field(..., ge=0)
    is_correct: bool | None = None


class EvaluationSubmit(BaseModel):
    """Evaluator write-back for one attempt."""

    evaluations: list[EvaluationItem] = Field(..., min_length=1)


class EvaluationAnswerOut(BaseModel):
    """Answer line shown to an evaluator."""

    answer_id: UUID
    question_id: UUID
    question_text: str
    question_type: str
    options: list[str]
    correct_answer: str | None
    answer_text: str
    is_correct: bool | None
    score_awarded: float | None
    max_score: int
    needs_evaluation: bool


class PendingEvaluationOut(BaseModel):
    """Attempt waiting for manual scoring."""

    attempt_id: UUID
    exam_id: UUID
    exam_title: str
    user_id: UUID
    user_name: str
    status: AttemptStatus
    submitted_at: datetime | None
    total_score: float
    pending_answers: int


class EvaluationDetailOut(BaseModel):
    """Full evaluation view of one attempt."""

    attempt_id: UUID
    exam_id: UUID
    exam_title: str
    user_id: UUID
    status: AttemptStatus
    total_score: float
    answers: list[EvaluationAnswerOut]


class EvaluationResultOut(BaseModel):
    """Result of an evaluation write-back."""

    attempt_id: UUID
    status: AttemptStatus
    total_score: float
    evaluated_answers: int
