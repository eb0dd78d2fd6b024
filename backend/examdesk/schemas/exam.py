"""Pydantic schemas for exams and questions."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from examdesk.common.timing import as_naive_utc
from examdesk.models.exam import ExamStatus, QuestionType

# ============================================================================
# Exam Schemas
# ============================================================================


class ExamCreate(BaseModel):
    """Request to create an exam (admin)."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    duration: int = Field(..., gt=0, le=24 * 60, description="Duration in minutes")
    total_marks: int = Field(..., gt=0)
    passing_marks: int = Field(..., ge=0)
    status: ExamStatus = ExamStatus.DRAFT
    start_date: datetime | None = None
    end_date: datetime | None = None
    shuffle_questions: bool = False

    @model_validator(mode="after")
    def check_marks_and_window(self) -> "ExamCreate":
        if self.passing_marks > self.total_marks:
            raise ValueError("passing_marks must not exceed total_marks")
        if (
            self.start_date
            and self.end_date
            and as_naive_utc(self.start_date) >= as_naive_utc(self.end_date)
        ):
            raise ValueError("end_date must be after start_date")
        return self


class ExamUpdate(BaseModel):
    """Partial exam update (admin).

    Only ``status`` and ``results_published`` may change once attempts exist.
    """

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    duration: int | None = Field(None, gt=0, le=24 * 60)
    total_marks: int | None = Field(None, gt=0)
    passing_marks: int | None = Field(None, ge=0)
    status: ExamStatus | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    shuffle_questions: bool | None = None
    results_published: bool | None = None


class ExamSummary(BaseModel):
    """Exam fields the attempt view needs."""

    id: UUID
    title: str
    duration: int
    total_marks: int
    passing_marks: int
    shuffle_questions: bool
    results_published: bool

    model_config = ConfigDict(from_attributes=True)


class ExamOut(ExamSummary):
    """Full exam response."""

    description: str | None
    status: ExamStatus
    start_date: datetime | None
    end_date: datetime | None
    created_at: datetime
    updated_at: datetime | None


# ============================================================================
# Question Schemas
# ============================================================================


class QuestionCreate(BaseModel):
    """Request to add a question to an exam (admin)."""

    text: str = Field(..., min_length=1)
    type: QuestionType
    options: list[str] = Field(default_factory=list)
    correct_answer: str | None = None
    marks: int = Field(..., gt=0)
    order_number: int = Field(..., ge=1)

    @model_validator(mode="after")
    def check_answer_key(self) -> "QuestionCreate":
        if self.type == QuestionType.MCQ:
            if len(self.options) < 2:
                raise ValueError("mcq questions need at least two options")
            if self.correct_answer not in self.options:
                raise ValueError("correct_answer must be one of the options")
        elif self.type == QuestionType.TRUEFALSE:
            if self.correct_answer not in ("true", "false"):
                raise ValueError("truefalse correct_answer must be 'true' or 'false'")
            self.options = ["true", "false"]
        else:
            self.options = []
            self.correct_answer = None
        return self


class QuestionOut(BaseModel):
    """Question as seen by learners and coordinators (no answer key)."""

    id: UUID
    exam_id: UUID
    text: str
    type: QuestionType
    options: list[str]
    marks: int
    order_number: int


class QuestionWithAnswerOut(QuestionOut):
    """Question as seen by grading roles."""

    correct_answer: str | None
