"""Exam authoring for administrators."""

from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from examdesk.common.timing import as_naive_utc
from examdesk.core.app_exceptions import raise_app_error
from examdesk.core.logging import get_logger
from examdesk.models.attempt import Attempt
from examdesk.models.exam import Exam, ExamStatus, Question
from examdesk.models.user import User, UserRole
from examdesk.schemas.exam import ExamCreate, ExamUpdate, QuestionCreate

logger = get_logger(__name__)

# Fields that stay editable after the first attempt exists
MUTABLE_WITH_ATTEMPTS = frozenset({"status", "results_published"})
NULLABLE_FIELDS = frozenset({"description", "start_date", "end_date"})


class ExamLockedError(Exception):
    """Exam content cannot change because attempts already exist."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


def has_attempts(db: Session, exam_id: UUID) -> bool:
    stmt = select(func.count(Attempt.id)).where(Attempt.exam_id == exam_id)
    return db.execute(stmt).scalar_one() > 0


def list_exams(db: Session, user: User) -> list[Exam]:
    """Learners see active exams only; staff roles see all."""
    stmt = select(Exam).order_by(Exam.created_at.desc())
    if UserRole(user.role) == UserRole.USER:
        stmt = stmt.where(Exam.status == ExamStatus.ACTIVE)
    return list(db.execute(stmt).scalars().all())


def get_exam_or_404(db: Session, exam_id: UUID) -> Exam:
    exam = db.get(Exam, exam_id)
    if not exam:
        raise_app_error(status.HTTP_404_NOT_FOUND, "NOT_FOUND", "Exam not found")
    return exam


def create_exam(db: Session, payload: ExamCreate, author: User) -> Exam:
    fields = payload.model_dump()
    for key in ("start_date", "end_date"):
        if fields[key] is not None:
            fields[key] = as_naive_utc(fields[key])
    exam = Exam(**fields, created_by=author.id)
    db.add(exam)
    db.commit()
    db.refresh(exam)
    logger.info("Exam created", extra={"exam_id": str(exam.id), "user_id": str(author.id)})
    return exam


def update_exam(db: Session, exam: Exam, payload: ExamUpdate) -> Exam:
    """
    Partially update an exam.

    Raises:
        ExamLockedError: content fields changed on an exam that already has attempts
    """
    changes = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key in NULLABLE_FIELDS
    }
    if set(changes) - MUTABLE_WITH_ATTEMPTS and has_attempts(db, exam.id):
        raise ExamLockedError("Exam already has attempts; only status and results_published may change")

    merged = {
        field: changes.get(field, getattr(exam, field))
        for field in ("total_marks", "passing_marks", "start_date", "end_date")
    }
    if merged["passing_marks"] > merged["total_marks"]:
        raise_app_error(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR",
            "Invalid exam data",
            [{"field": "body.passing_marks", "issue": "passing_marks must not exceed total_marks"}],
        )
    start, end = merged["start_date"], merged["end_date"]
    if start and end and as_naive_utc(start) >= as_naive_utc(end):
        raise_app_error(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR",
            "Invalid exam data",
            [{"field": "body.end_date", "issue": "end_date must be after start_date"}],
        )

    for key, value in changes.items():
        if key in ("start_date", "end_date") and value is not None:
            value = as_naive_utc(value)
        setattr(exam, key, value)

    db.commit()
    db.refresh(exam)
    return exam


def delete_exam(db: Session, exam: Exam) -> None:
    """Delete an exam and its questions. Exams with attempts are kept."""
    if has_attempts(db, exam.id):
        raise ExamLockedError("Exam already has attempts and cannot be deleted")
    db.delete(exam)
    db.commit()


def add_question(db: Session, exam: Exam, payload: QuestionCreate) -> Question:
    """
    Add a question to an exam.

    Raises:
        ExamLockedError: the exam already has attempts
    """
    if has_attempts(db, exam.id):
        raise ExamLockedError("Exam already has attempts; questions cannot be added")

    question = Question(exam_id=exam.id, **payload.model_dump())
    db.add(question)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise_app_error(
            status.HTTP_409_CONFLICT,
            "DUPLICATE_ORDER_NUMBER",
            f"Exam already has a question at position {payload.order_number}",
        )
    db.refresh(question)
    return question
