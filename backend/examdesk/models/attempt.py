"""Attempt, answer and attempt event models."""

import uuid
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from examdesk.db.base import Base
from examdesk.models.exam import _enum_values


class AttemptStatus(str, PyEnum):
    """Attempt lifecycle status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EVALUATED = "evaluated"
    PUBLISHED = "published"
    ABANDONED = "abandoned"


ACTIVE_STATUSES = frozenset({AttemptStatus.PENDING, AttemptStatus.IN_PROGRESS})
FINISHED_STATUSES = frozenset(
    {AttemptStatus.COMPLETED, AttemptStatus.EVALUATED, AttemptStatus.PUBLISHED}
)

# Forward-only lifecycle. Every status change goes through this table.
ATTEMPT_TRANSITIONS: dict[AttemptStatus, frozenset[AttemptStatus]] = {
    AttemptStatus.PENDING: frozenset(
        {AttemptStatus.IN_PROGRESS, AttemptStatus.COMPLETED, AttemptStatus.ABANDONED}
    ),
    AttemptStatus.IN_PROGRESS: frozenset({AttemptStatus.COMPLETED, AttemptStatus.ABANDONED}),
    AttemptStatus.COMPLETED: frozenset({AttemptStatus.EVALUATED, AttemptStatus.PUBLISHED}),
    AttemptStatus.EVALUATED: frozenset({AttemptStatus.PUBLISHED}),
    AttemptStatus.PUBLISHED: frozenset(),
    AttemptStatus.ABANDONED: frozenset(),
}


def can_transition(current: AttemptStatus, target: AttemptStatus) -> bool:
    """Return True if ``current -> target`` is a legal lifecycle step."""
    return target in ATTEMPT_TRANSITIONS[current]


class Attempt(Base):
    """One learner's attempt at one exam (user_exam)."""

    __tablename__ = "attempts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    exam_id = Column(Uuid, ForeignKey("exams.id"), nullable=False)

    status = Column(
        Enum(
            AttemptStatus,
            name="attempt_status",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=AttemptStatus.PENDING,
    )
    started_at = Column(DateTime(timezone=True), nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)

    # Only authoritative once completed/evaluated/published
    total_score = Column(Numeric(8, 2), nullable=False, default=0)

    evaluated_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    evaluated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    exam = relationship("Exam", back_populates="attempts")
    answers = relationship("Answer", back_populates="attempt", cascade="all, delete-orphan")
    events = relationship("AttemptEvent", back_populates="attempt", cascade="all, delete-orphan")

    __table_args__ = (
        # At most one active attempt per (user, exam)
        Index(
            "uq_attempts_active_user_exam",
            "user_id",
            "exam_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'in_progress')"),
            sqlite_where=text("status IN ('pending', 'in_progress')"),
        ),
        Index("ix_attempts_status", "status"),
        Index("ix_attempts_user_exam", "user_id", "exam_id"),
    )


class Answer(Base):
    """A learner's answer to one question within one attempt (upserted)."""

    __tablename__ = "answers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    attempt_id = Column(
        Uuid,
        ForeignKey("attempts.id", ondelete="CASCADE"),
        nullable=False,
    )
    question_id = Column(
        Uuid,
        ForeignKey("questions.id", ondelete="CASCADE"),
        nullable=False,
    )

    answer_text = Column(Text, nullable=False, default="")
    is_correct = Column(Boolean, nullable=True)
    score_awarded = Column(Numeric(8, 2), nullable=True)
    needs_evaluation = Column(Boolean, nullable=False, default=False)

    # Ordering guard: writes with an older client_seq than the stored one are ignored
    client_seq = Column(Integer, nullable=True)
    revision = Column(Integer, nullable=False, default=0)

    evaluated_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    evaluated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    attempt = relationship("Attempt", back_populates="answers")
    question = relationship("Question")

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),
        Index("ix_answers_attempt_id", "attempt_id"),
    )


class AttemptEvent(Base):
    """Lifecycle events for attempts (append-only log).

    Rows are never updated or deleted by the application.
    """

    __tablename__ = "attempt_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    attempt_id = Column(
        Uuid,
        ForeignKey("attempts.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    event_type = Column(String(64), nullable=False)
    payload_json = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    attempt = relationship("Attempt", back_populates="events")

    __table_args__ = (
        Index("ix_attempt_events_attempt_created", "attempt_id", "created_at"),
        Index("ix_attempt_events_type", "event_type"),
    )
