"""Test seed helpers for creating test data."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from examdesk.core.security import hash_password
from examdesk.models.attempt import Answer, Attempt, AttemptStatus
from examdesk.models.exam import Exam, ExamStatus, Question, QuestionType
from examdesk.models.user import User, UserRole
from examdesk.common.timing import utcnow


def create_test_user(
    db: Session,
    email: str | None = None,
    password: str = "TestPass123!",
    role: UserRole = UserRole.USER,
    is_active: bool = True,
    **kwargs: Any,
) -> User:
    """
    Create a test user with deterministic defaults.

    Args:
        db: Database session
        email: User email (defaults to role-based email)
        password: Plain password (will be hashed)
        role: User role
        is_active: Whether user is active
        **kwargs: Additional user attributes

    Returns:
        Created User instance
    """
    if email is None:
        email = f"test_{role.value}_{uuid.uuid4().hex[:8]}@test.example.com"

    user = User(
        id=kwargs.pop("id", uuid.uuid4()),
        email=email.lower().strip(),
        password_hash=hash_password(password),
        role=role.value,
        is_active=is_active,
        full_name=kwargs.pop("full_name", f"Test {role.value}"),
        **kwargs,
    )
    db.add(user)
    db.flush()
    return user


def create_exam_with_questions(
    db: Session,
    author: User,
    questions: list[tuple[str, int, list[str] | None, str | None]],
    duration: int = 60,
    status: ExamStatus = ExamStatus.ACTIVE,
    total_marks: int | None = None,
    passing_marks: int = 0,
    **kwargs: Any,
) -> Exam:
    """
    Create an exam and its questions.

    ``questions`` holds (type, marks, options, correct_answer) tuples in display order.
    """
    total = total_marks if total_marks is not None else sum(q[1] for q in questions)
    exam = Exam(
        title=kwargs.pop("title", "Test Exam"),
        duration=duration,
        total_marks=total,
        passing_marks=passing_marks,
        status=status,
        created_by=author.id,
        **kwargs,
    )
    db.add(exam)
    db.flush()

    for order, (qtype, marks, options, correct) in enumerate(questions, start=1):
        question_type = QuestionType(qtype)
        if question_type == QuestionType.TRUEFALSE and options is None:
            options = ["true", "false"]
        db.add(
            Question(
                exam_id=exam.id,
                text=f"Question {order}",
                type=question_type,
                options=options or [],
                correct_answer=correct,
                marks=marks,
                order_number=order,
            )
        )
    db.flush()
    db.refresh(exam)
    return exam


def create_attempt(
    db: Session,
    user: User,
    exam: Exam,
    status: AttemptStatus = AttemptStatus.IN_PROGRESS,
    started_at: datetime | None = None,
    answers: dict[uuid.UUID, str] | None = None,
) -> Attempt:
    """Insert an attempt directly, bypassing the start guards."""
    attempt = Attempt(
        user_id=user.id,
        exam_id=exam.id,
        status=status,
        started_at=started_at or utcnow(),
        total_score=0,
    )
    db.add(attempt)
    db.flush()
    for question_id, text in (answers or {}).items():
        question = db.get(Question, question_id)
        db.add(
            Answer(
                attempt_id=attempt.id,
                question_id=question_id,
                answer_text=text,
                needs_evaluation=question.type == QuestionType.TEXT,
                revision=1,
            )
        )
    db.flush()
    return attempt
