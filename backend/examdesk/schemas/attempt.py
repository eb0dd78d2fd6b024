"""Pydantic schemas for attempts and answers."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from examdesk.models.attempt import AttemptStatus
from examdesk.schemas.exam import ExamSummary

# ============================================================================
# Attempt Schemas
# ============================================================================


class AttemptOut(BaseModel):
    """Attempt record."""

    id: UUID
    user_id: UUID
    exam_id: UUID
    status: AttemptStatus
    started_at: datetime
    submitted_at: datetime | None
    total_score: float | None = Field(
        None, description="Only authoritative once completed, evaluated or published"
    )

    model_config = ConfigDict(from_attributes=True)


class AttemptTiming(BaseModel):
    """Server-side timing, computed from the recorded start time."""

    server_now: datetime
    deadline: datetime
    remaining_seconds: int


class AttemptStateOut(BaseModel):
    """Attempt with embedded exam summary and server timing (GetAttempt / StartAttempt)."""

    attempt: AttemptOut
    exam: ExamSummary
    timing: AttemptTiming


class AttemptListItem(BaseModel):
    """One row of the caller's attempt history."""

    attempt: AttemptOut
    exam: ExamSummary
    results_visible: bool


class AttemptStatusUpdate(BaseModel):
    """Learner-driven status change (exit / abandon)."""

    status: AttemptStatus


# ============================================================================
# Answer Schemas
# ============================================================================


class AnswerSave(BaseModel):
    """Upsert an answer for one question."""

    answer_text: str = Field(..., max_length=20000)
    client_seq: int | None = Field(
        None, ge=0, description="Monotonic per-question version assigned by the client"
    )


class AnswerOut(BaseModel):
    """Stored answer. Grading fields are withheld from learners until results are out."""

    id: UUID
    attempt_id: UUID
    question_id: UUID
    answer_text: str
    is_correct: bool | None = None
    score_awarded: float | None = None
    needs_evaluation: bool
    client_seq: int | None
    revision: int
    updated_at: datetime | None = None


class AnswerSaveResponse(BaseModel):
    """Result of an answer upsert."""

    answer: AnswerOut
    applied: bool = Field(description="False when a newer client_seq was already stored")
    attempt_status: AttemptStatus


# ============================================================================
# Submit & Result Schemas
# ============================================================================


class SubmitResponse(BaseModel):
    """Result of finalizing an attempt."""

    attempt_id: UUID
    status: AttemptStatus
    total_score: float
    submitted_at: datetime
    auto_graded_count: int
    pending_evaluation_count: int


class ResultAnswer(BaseModel):
    """Per-question line of an attempt result."""

    question_id: UUID
    question_text: str
    question_type: str
    answer_text: str | None
    correct_answer: str | None = None
    is_correct: bool | None = None
    score_awarded: float | None = None
    max_score: int


class ResultStatistics(BaseModel):
    """Aggregate result numbers."""

    total_questions: int
    correct_answers: int
    incorrect_answers: int
    pending_evaluation: int
    total_score: float | None = None
    percentage: float | None = None
    passed: bool | None = None
    time_taken_minutes: float | None = None


class AttemptResultOut(BaseModel):
    """Result view of a finished attempt."""

    attempt: AttemptOut
    exam: ExamSummary
    results_visible: bool
    statistics: ResultStatistics
    answers: list[ResultAnswer]
