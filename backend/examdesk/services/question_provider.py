"""Question set provider with a single role-keyed serialization policy.

Every question payload leaving the API goes through ``serialize_question`` so the answer
key can only ever reach grading roles.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from examdesk.models.exam import Exam, ExamStatus, Question
from examdesk.models.user import GRADING_ROLES, UserRole
from examdesk.schemas.exam import QuestionOut, QuestionWithAnswerOut


def can_see_answer_key(role: UserRole | str) -> bool:
    """Return True if the role may receive ``correct_answer``."""
    return UserRole(role) in GRADING_ROLES


def serialize_question(question: Question, role: UserRole | str) -> QuestionOut:
    """Serialize a question for a caller of the given role."""
    fields = {
        "id": question.id,
        "exam_id": question.exam_id,
        "text": question.text,
        "type": question.type,
        "options": list(question.options or []),
        "marks": question.marks,
        "order_number": question.order_number,
    }
    if can_see_answer_key(role):
        return QuestionWithAnswerOut(**fields, correct_answer=question.correct_answer)
    return QuestionOut(**fields)


def exam_visible_to(exam: Exam, role: UserRole | str) -> bool:
    """Learners only see active exams; staff roles see everything."""
    if UserRole(role) == UserRole.USER:
        return exam.status == ExamStatus.ACTIVE
    return True


def get_exam_questions(db: Session, exam_id: UUID) -> list[Question]:
    """Questions of an exam in authored order."""
    stmt = select(Question).where(Question.exam_id == exam_id).order_by(Question.order_number)
    return list(db.execute(stmt).scalars().all())


def list_questions(db: Session, exam: Exam, role: UserRole | str) -> list[QuestionOut]:
    """ListQuestions: ordered, redacted according to ``role``."""
    return [serialize_question(q, role) for q in get_exam_questions(db, exam.id)]
