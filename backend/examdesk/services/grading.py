"""Grading engine for objective questions.

Pure and deterministic: callers persist the outcome. Free-text questions always pass
through ungraded and are flagged for manual evaluation.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID

from examdesk.models.exam import QuestionType


class GradableQuestion(Protocol):
    id: UUID
    type: QuestionType
    correct_answer: str | None
    marks: int


@dataclass(frozen=True)
class QuestionGrade:
    """Outcome for one answered question."""

    question_id: UUID
    is_correct: bool | None
    score_awarded: int | None
    needs_evaluation: bool


@dataclass
class GradingResult:
    """Per-question outcomes plus the auto-graded total."""

    grades: dict[UUID, QuestionGrade] = field(default_factory=dict)
    total_score: int = 0

    @property
    def auto_graded_count(self) -> int:
        return sum(1 for g in self.grades.values() if not g.needs_evaluation)

    @property
    def pending_evaluation_count(self) -> int:
        return sum(1 for g in self.grades.values() if g.needs_evaluation)


def grade_answer(question: GradableQuestion, answer_text: str) -> QuestionGrade:
    """Grade a single answer. Comparison is exact and case-sensitive."""
    if not QuestionType(question.type).is_objective:
        return QuestionGrade(
            question_id=question.id,
            is_correct=None,
            score_awarded=None,
            needs_evaluation=True,
        )

    is_correct = question.correct_answer is not None and answer_text == question.correct_answer
    return QuestionGrade(
        question_id=question.id,
        is_correct=is_correct,
        score_awarded=question.marks if is_correct else 0,
        needs_evaluation=False,
    )


def grade(
    questions: Iterable[GradableQuestion],
    answers: Mapping[UUID, str],
) -> GradingResult:
    """Grade every answered question; unanswered questions are skipped (score 0)."""
    result = GradingResult()
    for question in questions:
        if question.id not in answers:
            continue
        outcome = grade_answer(question, answers[question.id])
        result.grades[question.id] = outcome
        if outcome.score_awarded:
            result.total_score += outcome.score_awarded
    return result
