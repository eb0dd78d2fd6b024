"""Database models."""

# Import all models here so metadata and Alembic can see them
from examdesk.models.attempt import Answer, Attempt, AttemptEvent, AttemptStatus
from examdesk.models.exam import Exam, ExamStatus, Question, QuestionType
from examdesk.models.user import User, UserRole

__all__ = [
    "User",
    "UserRole",
    "Exam",
    "ExamStatus",
    "Question",
    "QuestionType",
    "Attempt",
    "AttemptStatus",
    "Answer",
    "AttemptEvent",
]
