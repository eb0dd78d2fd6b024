"""Tests for the attempt lifecycle API."""

import uuid
from datetime import timedelta

from examdesk.common.timing import utcnow
from examdesk.models.attempt import Answer, Attempt, AttemptEvent, AttemptStatus
from examdesk.models.exam import ExamStatus
from tests.helpers.seed import create_attempt, create_exam_with_questions


def _start(client, exam, headers):
    return client.post(f"/v1/exams/{exam.id}/attempts", headers=headers)


def _questions(exam):
    return sorted(exam.questions, key=lambda q: q.order_number)


# ============================================================================
# Start
# ============================================================================


def test_start_is_idempotent(client, db, mcq_exam, auth_headers_learner):
    first = _start(client, mcq_exam, auth_headers_learner)
    second = _start(client, mcq_exam, auth_headers_learner)

    assert first.status_code == 201
    assert second.status_code == 200
    assert first.json()["attempt"]["id"] == second.json()["attempt"]["id"]
    assert db.query(Attempt).count() == 1
    assert first.json()["attempt"]["status"] == "pending"


def test_start_returns_server_timing(client, mcq_exam, auth_headers_learner):
    body = _start(client, mcq_exam, auth_headers_learner).json()

    assert body["exam"]["duration"] == 60
    assert 3590 <= body["timing"]["remaining_seconds"] <= 3600
    assert "correct_answer" not in str(body)


def test_start_requires_auth(client, mcq_exam):
    response = client.post(f"/v1/exams/{mcq_exam.id}/attempts")

    assert response.status_code == 401
    assert response.json()["error_code"] == "UNAUTHORIZED"


def test_learner_cannot_start_draft_exam(client, db, admin, auth_headers_learner):
    exam = create_exam_with_questions(
        db, admin, [("mcq", 1, ["A", "B"], "A")], status=ExamStatus.DRAFT
    )
    db.commit()

    response = _start(client, exam, auth_headers_learner)

    assert response.status_code == 404


def test_start_outside_date_window_is_rejected(client, db, admin, auth_headers_learner):
    exam = create_exam_with_questions(
        db,
        admin,
        [("mcq", 1, ["A", "B"], "A")],
        start_date=utcnow() + timedelta(days=1),
        end_date=utcnow() + timedelta(days=2),
    )
    db.commit()

    response = _start(client, exam, auth_headers_learner)

    assert response.status_code == 409
    assert response.json()["error_code"] == "EXAM_NOT_AVAILABLE"


def test_finished_attempt_cannot_be_restarted(client, db, learner, mcq_exam, auth_headers_learner):
    create_attempt(db, learner, mcq_exam, status=AttemptStatus.COMPLETED)
    db.commit()

    response = _start(client, mcq_exam, auth_headers_learner)

    assert response.status_code == 409
    assert response.json()["error_code"] == "ATTEMPT_CLOSED"


def test_restart_allowed_after_abandon(client, db, learner, mcq_exam, auth_headers_learner):
    old = create_attempt(db, learner, mcq_exam, status=AttemptStatus.ABANDONED)
    db.commit()

    response = _start(client, mcq_exam, auth_headers_learner)

    assert response.status_code == 201
    assert response.json()["attempt"]["id"] != str(old.id)


# ============================================================================
# Read / ownership
# ============================================================================


def test_other_users_attempt_is_not_found(
    client, mcq_exam, auth_headers_learner, auth_headers_other
):
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]

    for method, path in [
        ("GET", f"/v1/attempts/{attempt_id}"),
        ("GET", f"/v1/attempts/{attempt_id}/answers"),
        ("POST", f"/v1/attempts/{attempt_id}/submit"),
    ]:
        response = client.request(method, path, headers=auth_headers_other)
        assert response.status_code == 404, path
        assert response.json()["error_code"] == "NOT_FOUND"


def test_admin_can_read_any_attempt(client, mcq_exam, auth_headers_learner, auth_headers_admin):
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]

    response = client.get(f"/v1/attempts/{attempt_id}", headers=auth_headers_admin)

    assert response.status_code == 200


def test_get_attempt_remaining_time_from_server_start(
    client, db, learner, mcq_exam, auth_headers_learner
):
    attempt = create_attempt(
        db, learner, mcq_exam, started_at=utcnow() - timedelta(minutes=55)
    )
    db.commit()

    body = client.get(f"/v1/attempts/{attempt.id}", headers=auth_headers_learner).json()

    assert 290 <= body["timing"]["remaining_seconds"] <= 300


# ============================================================================
# Answers
# ============================================================================


def test_save_answer_upserts_one_row(client, db, mcq_exam, auth_headers_learner):
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]
    q1 = _questions(mcq_exam)[0]
    path = f"/v1/attempts/{attempt_id}/answers/{q1.id}"

    first = client.put(path, json={"answer_text": "B"}, headers=auth_headers_learner)
    second = client.put(path, json={"answer_text": "A"}, headers=auth_headers_learner)

    assert first.status_code == 200
    assert second.json()["answer"]["revision"] == 2
    rows = db.query(Answer).filter(Answer.attempt_id == uuid.UUID(attempt_id)).all()
    assert len(rows) == 1
    assert rows[0].answer_text == "A"


def test_first_save_moves_attempt_in_progress(client, mcq_exam, auth_headers_learner):
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]
    q1 = _questions(mcq_exam)[0]

    response = client.put(
        f"/v1/attempts/{attempt_id}/answers/{q1.id}",
        json={"answer_text": "A"},
        headers=auth_headers_learner,
    )

    assert response.json()["attempt_status"] == "in_progress"


def test_older_client_seq_is_ignored(client, db, mcq_exam, auth_headers_learner):
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]
    q1 = _questions(mcq_exam)[0]
    path = f"/v1/attempts/{attempt_id}/answers/{q1.id}"

    client.put(path, json={"answer_text": "newer", "client_seq": 5}, headers=auth_headers_learner)
    stale = client.put(
        path, json={"answer_text": "older", "client_seq": 4}, headers=auth_headers_learner
    )

    assert stale.status_code == 200
    assert stale.json()["applied"] is False
    assert stale.json()["answer"]["answer_text"] == "newer"
    assert db.query(Answer).one().answer_text == "newer"


def test_save_to_question_of_another_exam_is_404(
    client, db, admin, mcq_exam, auth_headers_learner
):
    other = create_exam_with_questions(db, admin, [("mcq", 1, ["A", "B"], "A")])
    db.commit()
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]

    response = client.put(
        f"/v1/attempts/{attempt_id}/answers/{other.questions[0].id}",
        json={"answer_text": "A"},
        headers=auth_headers_learner,
    )

    assert response.status_code == 404


def test_save_validation_error(client, mcq_exam, auth_headers_learner):
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]
    q1 = _questions(mcq_exam)[0]

    response = client.put(
        f"/v1/attempts/{attempt_id}/answers/{q1.id}",
        json={"client_seq": -1},
        headers=auth_headers_learner,
    )

    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "VALIDATION_ERROR"
    fields = {d["field"] for d in body["details"]}
    assert "body.answer_text" in fields
    assert "body.client_seq" in fields


def test_text_answer_flagged_for_evaluation(client, mixed_exam, auth_headers_learner):
    attempt_id = _start(client, mixed_exam, auth_headers_learner).json()["attempt"]["id"]
    text_q = _questions(mixed_exam)[2]

    response = client.put(
        f"/v1/attempts/{attempt_id}/answers/{text_q.id}",
        json={"answer_text": "My essay"},
        headers=auth_headers_learner,
    )

    assert response.json()["answer"]["needs_evaluation"] is True


def test_list_answers_hides_grading_until_published(
    client, db, mcq_exam, auth_headers_learner, auth_headers_admin
):
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]
    q1 = _questions(mcq_exam)[0]
    client.put(
        f"/v1/attempts/{attempt_id}/answers/{q1.id}",
        json={"answer_text": "A"},
        headers=auth_headers_learner,
    )
    client.post(f"/v1/attempts/{attempt_id}/submit", headers=auth_headers_learner)

    learner_view = client.get(f"/v1/attempts/{attempt_id}/answers", headers=auth_headers_learner)
    admin_view = client.get(f"/v1/attempts/{attempt_id}/answers", headers=auth_headers_admin)

    assert learner_view.json()[0]["answer_text"] == "A"
    assert learner_view.json()[0]["is_correct"] is None
    assert admin_view.json()[0]["is_correct"] is True
    assert admin_view.json()[0]["score_awarded"] == 2

    mcq_exam.results_published = True
    db.commit()
    learner_view = client.get(f"/v1/attempts/{attempt_id}/answers", headers=auth_headers_learner)
    assert learner_view.json()[0]["is_correct"] is True


# ============================================================================
# Submit
# ============================================================================


def _answer_all(client, attempt_id, exam, texts, headers):
    for question, text in zip(_questions(exam), texts):
        if text is not None:
            client.put(
                f"/v1/attempts/{attempt_id}/answers/{question.id}",
                json={"answer_text": text},
                headers=headers,
            )


def test_submit_grades_and_is_idempotent(client, db, mcq_exam, auth_headers_learner):
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]
    _answer_all(client, attempt_id, mcq_exam, ["A", "C", "C"], auth_headers_learner)

    first = client.post(f"/v1/attempts/{attempt_id}/submit", headers=auth_headers_learner)
    second = client.post(f"/v1/attempts/{attempt_id}/submit", headers=auth_headers_learner)

    assert first.status_code == 200
    assert first.json()["total_score"] == 7
    assert first.json()["status"] == "completed"
    assert first.json()["auto_graded_count"] == 3
    assert second.json()["total_score"] == 7
    assert second.json()["submitted_at"] == first.json()["submitted_at"]
    events = (
        db.query(AttemptEvent)
        .filter(AttemptEvent.event_type == "ATTEMPT_SUBMITTED")
        .count()
    )
    assert events == 1


def test_submit_leaves_text_answers_pending(client, mixed_exam, auth_headers_learner):
    attempt_id = _start(client, mixed_exam, auth_headers_learner).json()["attempt"]["id"]
    _answer_all(client, attempt_id, mixed_exam, ["green", "false", "essay"], auth_headers_learner)

    body = client.post(f"/v1/attempts/{attempt_id}/submit", headers=auth_headers_learner).json()

    assert body["total_score"] == 4
    assert body["auto_graded_count"] == 2
    assert body["pending_evaluation_count"] == 1


def test_save_after_submit_is_rejected(client, mcq_exam, auth_headers_learner):
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]
    client.post(f"/v1/attempts/{attempt_id}/submit", headers=auth_headers_learner)
    q1 = _questions(mcq_exam)[0]

    response = client.put(
        f"/v1/attempts/{attempt_id}/answers/{q1.id}",
        json={"answer_text": "A"},
        headers=auth_headers_learner,
    )

    assert response.status_code == 409
    assert response.json()["error_code"] == "ATTEMPT_CLOSED"


# ============================================================================
# Expiry
# ============================================================================


def test_expired_attempt_is_finalized_lazily(client, db, learner, mcq_exam, auth_headers_learner):
    q1, q2, _ = _questions(mcq_exam)
    attempt = create_attempt(
        db,
        learner,
        mcq_exam,
        started_at=utcnow() - timedelta(minutes=62),
        answers={q1.id: "A", q2.id: "B"},
    )
    db.commit()

    body = client.get(f"/v1/attempts/{attempt.id}", headers=auth_headers_learner).json()

    assert body["attempt"]["status"] == "completed"
    assert body["attempt"]["total_score"] == 5
    assert body["timing"]["remaining_seconds"] == 0

    response = client.put(
        f"/v1/attempts/{attempt.id}/answers/{q1.id}",
        json={"answer_text": "B"},
        headers=auth_headers_learner,
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ATTEMPT_EXPIRED"


def test_submit_inside_grace_window_succeeds(client, db, learner, mcq_exam, auth_headers_learner):
    q1 = _questions(mcq_exam)[0]
    attempt = create_attempt(
        db,
        learner,
        mcq_exam,
        started_at=utcnow() - timedelta(minutes=60, seconds=20),
    )
    db.commit()

    saved = client.put(
        f"/v1/attempts/{attempt.id}/answers/{q1.id}",
        json={"answer_text": "A"},
        headers=auth_headers_learner,
    )
    submitted = client.post(f"/v1/attempts/{attempt.id}/submit", headers=auth_headers_learner)

    assert saved.status_code == 200
    assert submitted.status_code == 200
    assert submitted.json()["total_score"] == 2


# ============================================================================
# Status changes
# ============================================================================


def test_exit_marks_completed_with_score(client, mcq_exam, auth_headers_learner):
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]
    _answer_all(client, attempt_id, mcq_exam, ["A", None, None], auth_headers_learner)

    response = client.patch(
        f"/v1/attempts/{attempt_id}/status",
        json={"status": "completed"},
        headers=auth_headers_learner,
    )

    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["total_score"] == 2


def test_abandon_then_submit_is_rejected(client, mcq_exam, auth_headers_learner):
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]

    abandoned = client.patch(
        f"/v1/attempts/{attempt_id}/status",
        json={"status": "abandoned"},
        headers=auth_headers_learner,
    )
    submit = client.post(f"/v1/attempts/{attempt_id}/submit", headers=auth_headers_learner)

    assert abandoned.json()["status"] == "abandoned"
    assert submit.status_code == 409


def test_status_cannot_move_backwards(client, mcq_exam, auth_headers_learner):
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]
    client.post(f"/v1/attempts/{attempt_id}/submit", headers=auth_headers_learner)

    abandon = client.patch(
        f"/v1/attempts/{attempt_id}/status",
        json={"status": "abandoned"},
        headers=auth_headers_learner,
    )
    publish = client.patch(
        f"/v1/attempts/{attempt_id}/status",
        json={"status": "published"},
        headers=auth_headers_learner,
    )

    assert abandon.status_code == 409
    assert abandon.json()["error_code"] == "INVALID_TRANSITION"
    assert publish.status_code == 409


# ============================================================================
# Result
# ============================================================================


def test_result_hides_scores_until_published(client, db, mcq_exam, auth_headers_learner):
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]
    _answer_all(client, attempt_id, mcq_exam, ["A", "C", "C"], auth_headers_learner)
    client.post(f"/v1/attempts/{attempt_id}/submit", headers=auth_headers_learner)

    hidden = client.get(f"/v1/attempts/{attempt_id}/result", headers=auth_headers_learner).json()
    assert hidden["results_visible"] is False
    assert hidden["attempt"]["total_score"] is None
    assert hidden["statistics"]["total_questions"] == 3
    assert all(line["correct_answer"] is None for line in hidden["answers"])

    mcq_exam.results_published = True
    db.commit()
    shown = client.get(f"/v1/attempts/{attempt_id}/result", headers=auth_headers_learner).json()
    assert shown["statistics"]["total_score"] == 7
    assert shown["statistics"]["percentage"] == 70.0
    assert shown["statistics"]["correct_answers"] == 2
    assert all(line["correct_answer"] is None for line in shown["answers"])


def test_result_before_submit_is_conflict(client, mcq_exam, auth_headers_learner):
    attempt_id = _start(client, mcq_exam, auth_headers_learner).json()["attempt"]["id"]

    response = client.get(f"/v1/attempts/{attempt_id}/result", headers=auth_headers_learner)

    assert response.status_code == 409
    assert response.json()["error_code"] == "ATTEMPT_NOT_FINISHED"
