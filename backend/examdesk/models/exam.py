"""Exam and question models."""

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
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from examdesk.db.base import Base


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


class ExamStatus(str, PyEnum):
    """Exam publication status."""

    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"


class QuestionType(str, PyEnum):
    """Question type. Only mcq and truefalse are auto-graded."""

    MCQ = "mcq"
    TRUEFALSE = "truefalse"
    TEXT = "text"

    @property
    def is_objective(self) -> bool:
        return self is not QuestionType.TEXT


class Exam(Base):
    """An exam authored by an administrator."""

    __tablename__ = "exams"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    duration = Column(Integer, nullable=False)  # minutes
    total_marks = Column(Integer, nullable=False)
    passing_marks = Column(Integer, nullable=False)

    status = Column(
        Enum(ExamStatus, name="exam_status", native_enum=False, values_callable=_enum_values),
        nullable=False,
        default=ExamStatus.DRAFT,
    )
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    shuffle_questions = Column(Boolean, nullable=False, default=False)
    results_published = Column(Boolean, nullable=False, default=False)

    created_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    questions = relationship(
        "Question",
        back_populates="exam",
        cascade="all, delete-orphan",
        order_by="Question.order_number",
    )
    attempts = relationship("Attempt", back_populates="exam")

    __table_args__ = (Index("ix_exams_status", "status"),)


class Question(Base):
    """A question belonging to one exam."""

    __tablename__ = "questions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    exam_id = Column(
        Uuid,
        ForeignKey("exams.id", ondelete="CASCADE"),
        nullable=False,
    )

    text = Column(Text, nullable=False)
    type = Column(
        Enum(QuestionType, name="question_type", native_enum=False, values_callable=_enum_values),
        nullable=False,
    )
    options = Column(JSON, nullable=False, default=list)  # mcq only
    correct_answer = Column(Text, nullable=True)  # ignored for text questions
    marks = Column(Integer, nullable=False)
    order_number = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    exam = relationship("Exam", back_populates="questions")

    __table_args__ = (
        UniqueConstraint("exam_id", "order_number", name="uq_question_exam_order"),
        Index("ix_questions_exam_id", "exam_id"),
    )
