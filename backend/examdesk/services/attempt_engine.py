"""Attempt engine: start, answer upsert, lazy expiry, submit and results."""

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from examdesk.common.timing import as_naive_utc, attempt_deadline, remaining_seconds, utcnow
from examdesk.core.app_exceptions import raise_app_error
from examdesk.core.config import settings
from examdesk.core.logging import get_logger
from examdesk.models.attempt import (
    ACTIVE_STATUSES,
    FINISHED_STATUSES,
    Answer,
    Attempt,
    AttemptStatus,
    can_transition,
)
from examdesk.models.exam import Exam, ExamStatus, Question, QuestionType
from examdesk.models.user import User, UserRole
from examdesk.schemas.attempt import (
    AnswerOut,
    AnswerSave,
    AttemptListItem,
    AttemptOut,
    AttemptResultOut,
    AttemptStateOut,
    AttemptTiming,
    ResultAnswer,
    ResultStatistics,
    SubmitResponse,
)
from examdesk.schemas.exam import ExamSummary
from examdesk.services.grading import GradingResult, grade
from examdesk.services.question_provider import (
    can_see_answer_key,
    exam_visible_to,
    get_exam_questions,
)
from examdesk.services.telemetry import EventType, log_event

logger = get_logger(__name__)


class AttemptStateError(Exception):
    """Attempt is in a state that does not allow the requested operation."""

    def __init__(self, code: str, detail: str):
        self.code = code
        self.detail = detail
        super().__init__(detail)


# ============================================================================
# Lookups
# ============================================================================


def get_visible_exam(db: Session, exam_id: UUID, user: User) -> Exam:
    """Load an exam the caller may see, else 404."""
    exam = db.get(Exam, exam_id)
    if not exam or not exam_visible_to(exam, user.role):
        raise_app_error(status.HTTP_404_NOT_FOUND, "NOT_FOUND", "Exam not found")
    return exam


def get_question_exam(db: Session, exam_id: UUID, user: User) -> Exam:
    """
    Load an exam whose questions the caller may read.

    Staff roles read any exam. Learners read an exam they hold an active attempt on,
    whatever its status now is; otherwise the exam must be open for attempts.

    Raises:
        AttemptStateError: exam active but outside its date window
    """
    exam = db.get(Exam, exam_id)
    if exam is None:
        raise_app_error(status.HTTP_404_NOT_FOUND, "NOT_FOUND", "Exam not found")
    if UserRole(user.role) != UserRole.USER:
        return exam

    attempt = _active_attempt(db, user.id, exam.id)
    if attempt is not None:
        attempt = check_and_expire_attempt(db, attempt)
        if attempt.status in ACTIVE_STATUSES:
            return exam

    if not exam_visible_to(exam, user.role):
        raise_app_error(status.HTTP_404_NOT_FOUND, "NOT_FOUND", "Exam not found")
    _check_exam_open(exam, utcnow())
    return exam


def get_user_attempt(
    db: Session,
    attempt_id: UUID,
    user: User,
    allow_graders: bool = False,
) -> Attempt:
    """
    Load an attempt owned by ``user``.

    Attempts belonging to someone else are reported as missing so their existence does
    not leak. Grading roles may read any attempt when ``allow_graders`` is set.
    """
    attempt = db.get(Attempt, attempt_id)
    if attempt is None or (
        attempt.user_id != user.id and not (allow_graders and user.is_grader)
    ):
        raise_app_error(status.HTTP_404_NOT_FOUND, "NOT_FOUND", "Attempt not found")
    return attempt


def _active_attempt(db: Session, user_id: UUID, exam_id: UUID) -> Attempt | None:
    stmt = select(Attempt).where(
        Attempt.user_id == user_id,
        Attempt.exam_id == exam_id,
        Attempt.status.in_(ACTIVE_STATUSES),
    )
    return db.execute(stmt).scalar_one_or_none()


def _attempt_answers(db: Session, attempt_id: UUID) -> list[Answer]:
    stmt = select(Answer).where(Answer.attempt_id == attempt_id).order_by(Answer.created_at)
    return list(db.execute(stmt).scalars().all())


def _finished_attempt(db: Session, user_id: UUID, exam_id: UUID) -> Attempt | None:
    stmt = (
        select(Attempt)
        .where(
            Attempt.user_id == user_id,
            Attempt.exam_id == exam_id,
            Attempt.status.in_(FINISHED_STATUSES),
        )
        .order_by(Attempt.started_at.desc())
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()


# ============================================================================
# Timing
# ============================================================================


def attempt_timing(attempt: Attempt, exam: Exam, now: datetime | None = None) -> AttemptTiming:
    """Server timing for an attempt. Never uses the client clock."""
    now = now or utcnow()
    return AttemptTiming(
        server_now=now,
        deadline=attempt_deadline(attempt.started_at, exam.duration),
        remaining_seconds=remaining_seconds(attempt.started_at, exam.duration, now),
    )


def is_past_grace(attempt: Attempt, exam: Exam, now: datetime | None = None) -> bool:
    """True once the deadline plus the submit grace window has passed."""
    now = now or utcnow()
    grace = timedelta(seconds=settings.SUBMIT_GRACE_SECONDS)
    return as_naive_utc(now) > attempt_deadline(attempt.started_at, exam.duration) + grace


def attempt_state(attempt: Attempt, now: datetime | None = None) -> AttemptStateOut:
    """GetAttempt payload: attempt, exam summary and server timing."""
    return AttemptStateOut(
        attempt=AttemptOut.model_validate(attempt),
        exam=ExamSummary.model_validate(attempt.exam),
        timing=attempt_timing(attempt, attempt.exam, now),
    )


# ============================================================================
# Start
# ============================================================================


def _check_exam_open(exam: Exam, now: datetime) -> None:
    if exam.status != ExamStatus.ACTIVE:
        raise AttemptStateError("EXAM_NOT_AVAILABLE", "Exam is not active")
    if exam.start_date and now < as_naive_utc(exam.start_date):
        raise AttemptStateError("EXAM_NOT_AVAILABLE", "Exam has not started yet")
    if exam.end_date and now > as_naive_utc(exam.end_date):
        raise AttemptStateError("EXAM_NOT_AVAILABLE", "Exam has ended")


def start_attempt(db: Session, user: User, exam_id: UUID) -> tuple[Attempt, bool]:
    """
    Start (or resume) the caller's attempt at an exam.

    Idempotent: an existing active attempt is returned unchanged with ``created=False``.

    Returns:
        (attempt, created)

    Raises:
        AttemptStateError: exam closed, or the caller already finished this exam
    """
    exam = db.get(Exam, exam_id)
    if exam is None:
        raise_app_error(status.HTTP_404_NOT_FOUND, "NOT_FOUND", "Exam not found")

    # An active attempt resumes even if the exam was closed after it started
    existing = _active_attempt(db, user.id, exam.id)
    if existing:
        existing = check_and_expire_attempt(db, existing)
        if existing.status in ACTIVE_STATUSES:
            log_event(db, existing.id, user.id, EventType.ATTEMPT_RESUMED)
            db.commit()
            return existing, False

    exam = get_visible_exam(db, exam_id, user)
    if _finished_attempt(db, user.id, exam.id):
        raise AttemptStateError("ATTEMPT_CLOSED", "Exam already attempted")

    now = utcnow()
    _check_exam_open(exam, now)

    attempt = Attempt(
        user_id=user.id,
        exam_id=exam.id,
        status=AttemptStatus.PENDING,
        started_at=now,
        total_score=0,
    )
    db.add(attempt)
    try:
        db.flush()
        log_event(db, attempt.id, user.id, EventType.ATTEMPT_STARTED, {"exam_id": str(exam.id)})
        db.commit()
    except IntegrityError:
        db.rollback()
        # Concurrent start won the partial unique index: return its attempt
        winner = _active_attempt(db, user.id, exam.id)
        if winner is None:
            raise
        return winner, False

    db.refresh(attempt)
    logger.info(
        "Attempt started",
        extra={"attempt_id": str(attempt.id), "exam_id": str(exam.id), "user_id": str(user.id)},
    )
    return attempt, True


# ============================================================================
# Finalize / expiry / submit
# ============================================================================


def _finalize(db: Session, attempt: Attempt, event_type: EventType) -> GradingResult:
    """Grade held answers and move the attempt to completed. Caller checked the status."""
    questions = get_exam_questions(db, attempt.exam_id)
    answers = {a.question_id: a for a in _attempt_answers(db, attempt.id)}
    result = grade(questions, {qid: a.answer_text for qid, a in answers.items()})

    for question_id, outcome in result.grades.items():
        answer = answers[question_id]
        answer.is_correct = outcome.is_correct
        answer.score_awarded = outcome.score_awarded
        answer.needs_evaluation = outcome.needs_evaluation

    attempt.status = AttemptStatus.COMPLETED
    attempt.submitted_at = utcnow()
    attempt.total_score = result.total_score

    log_event(
        db,
        attempt.id,
        attempt.user_id,
        event_type,
        {
            "total_score": result.total_score,
            "auto_graded": result.auto_graded_count,
            "pending_evaluation": result.pending_evaluation_count,
        },
    )
    db.commit()
    db.refresh(attempt)

    logger.info(
        "Attempt finalized",
        extra={
            "attempt_id": str(attempt.id),
            "event": event_type.value,
            "total_score": result.total_score,
        },
    )
    return result


def check_and_expire_attempt(db: Session, attempt: Attempt) -> Attempt:
    """
    Finalize an active attempt whose deadline plus grace has passed (lazy expiry).

    Returns:
        The attempt, possibly now completed
    """
    if attempt.status not in ACTIVE_STATUSES:
        return attempt

    if is_past_grace(attempt, attempt.exam):
        _finalize(db, attempt, EventType.ATTEMPT_EXPIRED)

    return attempt


def _submit_response(db: Session, attempt: Attempt) -> SubmitResponse:
    answers = _attempt_answers(db, attempt.id)
    pending = sum(1 for a in answers if a.needs_evaluation)
    return SubmitResponse(
        attempt_id=attempt.id,
        status=attempt.status,
        total_score=float(attempt.total_score or 0),
        submitted_at=attempt.submitted_at,
        auto_graded_count=len(answers) - pending,
        pending_evaluation_count=pending,
    )


def submit_attempt(db: Session, attempt: Attempt) -> SubmitResponse:
    """
    Submit an attempt and grade its objective answers.

    Idempotent: a finished attempt is returned as-is without regrading.

    Raises:
        AttemptStateError: attempt was abandoned
    """
    db.refresh(attempt, with_for_update=True)

    if attempt.status in FINISHED_STATUSES:
        return _submit_response(db, attempt)

    if attempt.status == AttemptStatus.ABANDONED:
        raise AttemptStateError("ATTEMPT_CLOSED", "Attempt was abandoned")

    event = (
        EventType.ATTEMPT_EXPIRED
        if is_past_grace(attempt, attempt.exam)
        else EventType.ATTEMPT_SUBMITTED
    )
    _finalize(db, attempt, event)
    return _submit_response(db, attempt)


def update_attempt_status(
    db: Session,
    attempt: Attempt,
    target: AttemptStatus,
) -> Attempt:
    """
    Learner-driven status change.

    ``completed`` finalizes through grading so total_score stays authoritative;
    ``abandoned`` closes an active attempt without grading.

    Raises:
        AttemptStateError: target not reachable from the current status
    """
    if target not in (AttemptStatus.COMPLETED, AttemptStatus.ABANDONED):
        raise AttemptStateError(
            "INVALID_TRANSITION", f"Status {target.value} cannot be set directly"
        )

    attempt = check_and_expire_attempt(db, attempt)

    if attempt.status == target:
        return attempt

    if not can_transition(attempt.status, target):
        raise AttemptStateError(
            "INVALID_TRANSITION",
            f"Cannot move attempt from {attempt.status.value} to {target.value}",
        )

    if target == AttemptStatus.COMPLETED:
        _finalize(db, attempt, EventType.ATTEMPT_SUBMITTED)
        return attempt

    previous = attempt.status
    attempt.status = AttemptStatus.ABANDONED
    log_event(
        db,
        attempt.id,
        attempt.user_id,
        EventType.ATTEMPT_STATUS_CHANGED,
        {"from": previous.value, "to": target.value},
    )
    db.commit()
    db.refresh(attempt)
    return attempt


# ============================================================================
# Answers
# ============================================================================


def _write_answer(attempt: Attempt, answer: Answer, question: Question, payload: AnswerSave) -> bool:
    """Apply a save onto ``answer``. Returns False if a newer client_seq is already stored."""
    if (
        payload.client_seq is not None
        and answer.client_seq is not None
        and payload.client_seq < answer.client_seq
    ):
        return False

    answer.answer_text = payload.answer_text
    if payload.client_seq is not None:
        answer.client_seq = payload.client_seq
    answer.revision = (answer.revision or 0) + 1
    answer.needs_evaluation = question.type == QuestionType.TEXT
    answer.is_correct = None
    answer.score_awarded = None

    if attempt.status == AttemptStatus.PENDING:
        attempt.status = AttemptStatus.IN_PROGRESS
    return True


def answer_out(answer: Answer, show_grading: bool) -> AnswerOut:
    """Serialize an answer, dropping grading fields unless ``show_grading``."""
    out = AnswerOut(
        id=answer.id,
        attempt_id=answer.attempt_id,
        question_id=answer.question_id,
        answer_text=answer.answer_text,
        needs_evaluation=answer.needs_evaluation,
        client_seq=answer.client_seq,
        revision=answer.revision,
        updated_at=answer.updated_at or answer.created_at,
    )
    if show_grading:
        out.is_correct = answer.is_correct
        out.score_awarded = (
            float(answer.score_awarded) if answer.score_awarded is not None else None
        )
    return out


def _get_answer(db: Session, attempt_id: UUID, question_id: UUID) -> Answer | None:
    stmt = select(Answer).where(
        Answer.attempt_id == attempt_id,
        Answer.question_id == question_id,
    )
    return db.execute(stmt).scalar_one_or_none()


def save_answer(
    db: Session,
    attempt: Attempt,
    question_id: UUID,
    payload: AnswerSave,
) -> tuple[Answer, bool]:
    """
    Upsert the answer for one question of an active attempt.

    Returns:
        (answer, applied)

    Raises:
        AttemptStateError: attempt finished, abandoned or expired
    """
    attempt = check_and_expire_attempt(db, attempt)
    if attempt.status not in ACTIVE_STATUSES:
        if attempt.status != AttemptStatus.ABANDONED and is_past_grace(attempt, attempt.exam):
            raise AttemptStateError("ATTEMPT_EXPIRED", "Attempt time has expired")
        raise AttemptStateError("ATTEMPT_CLOSED", "Attempt is no longer active")

    attempt_id = attempt.id  # capture before any rollback
    question = db.get(Question, question_id)
    if question is None or question.exam_id != attempt.exam_id:
        raise_app_error(status.HTTP_404_NOT_FOUND, "NOT_FOUND", "Question not in this exam")

    answer = _get_answer(db, attempt_id, question_id)
    if answer is None:
        answer = Answer(attempt_id=attempt_id, question_id=question_id, revision=0)
        db.add(answer)

    applied = _write_answer(attempt, answer, question, payload)
    if not applied:
        return answer, False

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # Duplicate (attempt_id, question_id): concurrent insert. Apply onto the stored row.
        existing = _get_answer(db, attempt_id, question_id)
        if existing is None:
            raise
        applied = _write_answer(attempt, existing, question, payload)
        if not applied:
            return existing, False
        db.commit()
        answer = existing

    db.refresh(answer)
    return answer, True


def list_answers(db: Session, attempt: Attempt, viewer: User) -> list[AnswerOut]:
    """ListAnswers; grading fields withheld from learners until results are published."""
    show_grading = results_visible(attempt, viewer)
    return [answer_out(a, show_grading) for a in _attempt_answers(db, attempt.id)]


# ============================================================================
# Results
# ============================================================================


def results_visible(attempt: Attempt, viewer: User) -> bool:
    """Scores are visible once the exam's results are published, or to grading roles."""
    return bool(attempt.exam.results_published) or viewer.is_grader


def list_user_attempts(
    db: Session,
    user: User,
    status_filter: AttemptStatus | None = None,
    exam_id: UUID | None = None,
) -> list[AttemptListItem]:
    """
    The caller's own attempts, newest first.

    Overdue active attempts are finalized before listing. ``total_score`` is withheld
    unless results are visible to the caller.
    """
    stmt = select(Attempt).where(Attempt.user_id == user.id)
    if exam_id is not None:
        stmt = stmt.where(Attempt.exam_id == exam_id)
    attempts = [
        check_and_expire_attempt(db, a)
        for a in db.execute(stmt.order_by(Attempt.started_at.desc())).scalars().all()
    ]

    items: list[AttemptListItem] = []
    for attempt in attempts:
        if status_filter is not None and attempt.status != status_filter:
            continue
        visible = results_visible(attempt, user)
        attempt_out = AttemptOut.model_validate(attempt)
        if not visible:
            attempt_out.total_score = None
        items.append(
            AttemptListItem(
                attempt=attempt_out,
                exam=ExamSummary.model_validate(attempt.exam),
                results_visible=visible,
            )
        )
    return items


def attempt_result(db: Session, attempt: Attempt, viewer: User) -> AttemptResultOut:
    """
    Result view of a finished attempt.

    Scores are visible once the exam's results are published, or to grading roles.

    Raises:
        AttemptStateError: attempt not finished yet
    """
    attempt = check_and_expire_attempt(db, attempt)
    if attempt.status not in FINISHED_STATUSES:
        raise AttemptStateError("ATTEMPT_NOT_FINISHED", "Attempt has not been submitted")

    exam = attempt.exam
    visible = results_visible(attempt, viewer)
    show_key = can_see_answer_key(viewer.role)
    answers = {a.question_id: a for a in _attempt_answers(db, attempt.id)}
    questions = get_exam_questions(db, exam.id)

    lines: list[ResultAnswer] = []
    for question in questions:
        answer = answers.get(question.id)
        lines.append(
            ResultAnswer(
                question_id=question.id,
                question_text=question.text,
                question_type=question.type.value,
                answer_text=answer.answer_text if answer else None,
                correct_answer=question.correct_answer if show_key else None,
                is_correct=answer.is_correct if (answer and visible) else None,
                score_awarded=(
                    float(answer.score_awarded)
                    if (answer and visible and answer.score_awarded is not None)
                    else None
                ),
                max_score=question.marks,
            )
        )

    stats = ResultStatistics(
        total_questions=len(questions),
        correct_answers=sum(1 for a in answers.values() if a.is_correct is True),
        incorrect_answers=sum(1 for a in answers.values() if a.is_correct is False),
        pending_evaluation=sum(1 for a in answers.values() if a.needs_evaluation),
    )
    if attempt.submitted_at:
        taken = as_naive_utc(attempt.submitted_at) - as_naive_utc(attempt.started_at)
        stats.time_taken_minutes = round(taken.total_seconds() / 60, 2)
    if visible:
        total = Decimal(attempt.total_score or 0)
        stats.total_score = float(total)
        stats.percentage = (
            round(float(total) / exam.total_marks * 100, 2) if exam.total_marks else 0.0
        )
        stats.passed = total >= exam.passing_marks

    attempt_out = AttemptOut.model_validate(attempt)
    if not visible:
        attempt_out.total_score = None

    return AttemptResultOut(
        attempt=attempt_out,
        exam=ExamSummary.model_validate(exam),
        results_visible=visible,
        statistics=stats,
        answers=lines,
    )
