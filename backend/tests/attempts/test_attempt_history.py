"""Tests for the caller's attempt history."""

from datetime import timedelta

from examdesk.common.timing import utcnow
from examdesk.models.attempt import AttemptStatus
from tests.helpers.seed import create_attempt, create_exam_with_questions


def test_history_lists_only_own_attempts(
    client, db, learner, other_learner, mcq_exam, auth_headers_learner
):
    mine = create_attempt(db, learner, mcq_exam, status=AttemptStatus.COMPLETED)
    create_attempt(db, other_learner, mcq_exam, status=AttemptStatus.COMPLETED)
    db.commit()

    body = client.get("/v1/attempts", headers=auth_headers_learner).json()

    assert [item["attempt"]["id"] for item in body] == [str(mine.id)]
    assert body[0]["exam"]["id"] == str(mcq_exam.id)


def test_history_filters_by_status_and_exam(
    client, db, learner, admin, mcq_exam, auth_headers_learner
):
    other_exam = create_exam_with_questions(db, admin, [("mcq", 1, ["A", "B"], "A")])
    finished = create_attempt(
        db,
        learner,
        mcq_exam,
        status=AttemptStatus.COMPLETED,
        started_at=utcnow() - timedelta(minutes=30),
    )
    active = create_attempt(db, learner, other_exam, status=AttemptStatus.IN_PROGRESS)
    db.commit()

    completed = client.get(
        "/v1/attempts", params={"status": "completed"}, headers=auth_headers_learner
    ).json()
    by_exam = client.get(
        "/v1/attempts", params={"exam_id": str(other_exam.id)}, headers=auth_headers_learner
    ).json()
    everything = client.get("/v1/attempts", headers=auth_headers_learner).json()

    assert [item["attempt"]["id"] for item in completed] == [str(finished.id)]
    assert [item["attempt"]["id"] for item in by_exam] == [str(active.id)]
    assert [item["attempt"]["id"] for item in everything] == [str(active.id), str(finished.id)]


def test_history_hides_scores_until_published(client, db, mcq_exam, auth_headers_learner):
    attempt_id = client.post(
        f"/v1/exams/{mcq_exam.id}/attempts", headers=auth_headers_learner
    ).json()["attempt"]["id"]
    question = sorted(mcq_exam.questions, key=lambda q: q.order_number)[0]
    client.put(
        f"/v1/attempts/{attempt_id}/answers/{question.id}",
        json={"answer_text": "A"},
        headers=auth_headers_learner,
    )
    client.post(f"/v1/attempts/{attempt_id}/submit", headers=auth_headers_learner)

    hidden = client.get("/v1/attempts", headers=auth_headers_learner).json()[0]
    assert hidden["results_visible"] is False
    assert hidden["attempt"]["total_score"] is None

    mcq_exam.results_published = True
    db.commit()
    shown = client.get("/v1/attempts", headers=auth_headers_learner).json()[0]
    assert shown["results_visible"] is True
    assert shown["attempt"]["total_score"] == 2


def test_history_finalizes_overdue_attempts(client, db, learner, mcq_exam, auth_headers_learner):
    create_attempt(db, learner, mcq_exam, started_at=utcnow() - timedelta(minutes=90))
    db.commit()

    body = client.get(
        "/v1/attempts", params={"status": "in_progress"}, headers=auth_headers_learner
    ).json()
    completed = client.get(
        "/v1/attempts", params={"status": "completed"}, headers=auth_headers_learner
    ).json()

    assert body == []
    assert len(completed) == 1


def test_history_rejects_unknown_status(client, auth_headers_learner):
    response = client.get(
        "/v1/attempts", params={"status": "paused"}, headers=auth_headers_learner
    )

    assert response.status_code == 422
    assert response.json()["error_code"] == "VALIDATION_ERROR"


def test_history_requires_auth(client):
    response = client.get("/v1/attempts")

    assert response.status_code == 401
