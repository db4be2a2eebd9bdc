from __future__ import annotations

from typing import Any
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from tests.conftest import (
    T0,
    FakeClock,
    add_test_question,
    auth,
    create_test_exam,
    mint_token,
    start_test_attempt,
)


def _event(client: TestClient, token: str, attempt_id: str, kind: str):
    return client.post(
        f"/v1/attempts/{attempt_id}/events",
        json={"type": kind},
        headers=auth(token),
    )


def _submit(
    client: TestClient, token: str, attempt_id: str, answers: list[dict[str, Any]]
):
    return client.post(
        f"/v1/attempts/{attempt_id}/submit",
        json={"answers": answers},
        headers=auth(token),
    )


@pytest.fixture
def exam_with_question(client: TestClient, teacher_token: str):
    """An open auto-graded exam with one 1-point true/false question."""
    exam = create_test_exam(client, teacher_token, lives_allowed=3)
    question = add_test_question(client, teacher_token, exam["id"])
    return exam, question


# ---- attempt view ----


def test_student_sees_own_attempt(
    client: TestClient, student_token: str, exam_with_question
) -> None:
    exam, _question = exam_with_question
    attempt = start_test_attempt(client, student_token, exam["id"])

    resp = client.get(f"/v1/attempts/{attempt['id']}", headers=auth(student_token))
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "in_progress"
    assert body["lives_allowed"] == 3
    assert body["lives_remaining"] == 3
    assert body["seconds_left"] is None
    assert body["violations"] == 0


def test_other_student_cannot_see_attempt(
    client: TestClient, student_token: str, exam_with_question
) -> None:
    exam, _question = exam_with_question
    attempt = start_test_attempt(client, student_token, exam["id"])
    luis = mint_token(username="luis@example.com", roles=["student"])

    resp = client.get(f"/v1/attempts/{attempt['id']}", headers=auth(luis))
    assert resp.status_code == 403


def test_owner_teacher_sees_attempt(
    client: TestClient, teacher_token: str, student_token: str, exam_with_question
) -> None:
    exam, _question = exam_with_question
    attempt = start_test_attempt(client, student_token, exam["id"])
    resp = client.get(f"/v1/attempts/{attempt['id']}", headers=auth(teacher_token))
    assert resp.status_code == 200


def test_unknown_attempt(client: TestClient, student_token: str) -> None:
    resp = client.get(f"/v1/attempts/{uuid4()}", headers=auth(student_token))
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "ATTEMPT_NOT_FOUND"


def test_timed_attempt_reports_seconds_left(
    client: TestClient, teacher_token: str, student_token: str, clock: FakeClock
) -> None:
    exam = create_test_exam(client, teacher_token, duration_minutes=10)
    attempt = start_test_attempt(client, student_token, exam["id"])
    clock.advance(90)

    body = client.get(
        f"/v1/attempts/{attempt['id']}", headers=auth(student_token)
    ).json()
    assert body["seconds_left"] == 600 - 90


# ---- anti-cheat events ----


def test_violations_consume_lives_until_auto_submit(
    client: TestClient, teacher_token: str, student_token: str
) -> None:
    exam = create_test_exam(client, teacher_token, lives_allowed=2)
    attempt = start_test_attempt(client, student_token, exam["id"])

    first = _event(client, student_token, attempt["id"], "blur")
    assert first.status_code == 200
    assert first.json() == {
        "tag": "blur",
        "penalized": True,
        "ignored": False,
        "status": "in_progress",
        "lives_used": 1,
        "lives_remaining": 1,
        "terminal": False,
    }

    second = _event(client, student_token, attempt["id"], "exitFullscreen").json()
    assert second["tag"] == "fullscreen_exit"
    assert second["status"] == "submitted"
    assert second["lives_remaining"] == 0
    assert second["terminal"] is True

    after = _event(client, student_token, attempt["id"], "blur").json()
    assert after["ignored"] is True
    assert after["lives_used"] == 2

    view = client.get(f"/v1/attempts/{attempt['id']}", headers=auth(student_token))
    assert view.json()["finish_reason"] == "lives_exhausted"
    assert view.json()["ended_at"] == T0


def test_non_penalizing_event_is_recorded_only(
    client: TestClient, teacher_token: str, student_token: str
) -> None:
    exam = create_test_exam(client, teacher_token)
    attempt = start_test_attempt(client, student_token, exam["id"])

    body = _event(client, student_token, attempt["id"], "mouse_leave").json()
    assert body["penalized"] is False
    assert body["ignored"] is False
    assert body["lives_used"] == 0

    history = client.get(
        f"/v1/attempts/{attempt['id']}/events", headers=auth(teacher_token)
    ).json()
    assert [(e["tag"], e["penalized"]) for e in history] == [("mouse_leave", False)]
    assert history[0]["occurred_at"] == T0


def test_blank_violation_type(
    client: TestClient, teacher_token: str, student_token: str
) -> None:
    exam = create_test_exam(client, teacher_token)
    attempt = start_test_attempt(client, student_token, exam["id"])
    resp = _event(client, student_token, attempt["id"], "  --  ")
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "INVALID_VIOLATION"


def test_teacher_cannot_report_violation_for_student(
    client: TestClient, teacher_token: str, student_token: str
) -> None:
    exam = create_test_exam(client, teacher_token)
    attempt = start_test_attempt(client, student_token, exam["id"])
    assert _event(client, teacher_token, attempt["id"], "blur").status_code == 403


def test_violation_after_exam_closes_is_ignored(
    client: TestClient, teacher_token: str, student_token: str
) -> None:
    exam = create_test_exam(client, teacher_token)
    attempt = start_test_attempt(client, student_token, exam["id"])
    client.patch(
        f"/v1/exams/{exam['id']}", json={"status": "closed"}, headers=auth(teacher_token)
    )

    body = _event(client, student_token, attempt["id"], "blur").json()
    assert body["ignored"] is True
    assert body["lives_used"] == 0


# ---- answers / submit ----


def test_draft_then_submit_scores_answers(
    client: TestClient, teacher_token: str, student_token: str, exam_with_question
) -> None:
    exam, question = exam_with_question
    second = add_test_question(
        client, teacher_token, exam["id"], prompt="Water is dry.", expected_answer="false"
    )
    attempt = start_test_attempt(client, student_token, exam["id"])

    draft = client.put(
        f"/v1/attempts/{attempt['id']}/answers/{second['id']}",
        json={"value": "false"},
        headers=auth(student_token),
    )
    assert draft.status_code == 200
    assert draft.json()["value"] == "false"
    assert draft.json()["score"] is None

    resp = _submit(
        client,
        student_token,
        attempt["id"],
        [{"question_id": question["id"], "value": "TRUE"}],
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["grading_mode"] == "auto"
    assert body["score"] == 2
    assert body["max_score"] == 2
    assert body["attempt"]["status"] == "submitted"
    assert body["attempt"]["finish_reason"] == "submitted"


def test_second_submit_is_conflict(
    client: TestClient, student_token: str, exam_with_question
) -> None:
    exam, question = exam_with_question
    attempt = start_test_attempt(client, student_token, exam["id"])
    answers = [{"question_id": question["id"], "value": "true"}]

    assert _submit(client, student_token, attempt["id"], answers).status_code == 200
    again = _submit(client, student_token, attempt["id"], answers)
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "ATTEMPT_CLOSED"


def test_submit_requires_answers(
    client: TestClient, student_token: str, exam_with_question
) -> None:
    exam, _question = exam_with_question
    attempt = start_test_attempt(client, student_token, exam["id"])
    resp = _submit(client, student_token, attempt["id"], [])
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "NO_ANSWERS"


def test_submit_unknown_question(
    client: TestClient, student_token: str, exam_with_question
) -> None:
    exam, _question = exam_with_question
    attempt = start_test_attempt(client, student_token, exam["id"])
    resp = _submit(
        client, student_token, attempt["id"], [{"question_id": str(uuid4()), "value": 1}]
    )
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "QUESTION_NOT_FOUND"

    view = client.get(f"/v1/attempts/{attempt['id']}", headers=auth(student_token))
    assert view.json()["status"] == "in_progress"


def test_oversized_answer_is_rejected(
    client: TestClient, student_token: str, exam_with_question
) -> None:
    exam, question = exam_with_question
    attempt = start_test_attempt(client, student_token, exam["id"])
    resp = client.put(
        f"/v1/attempts/{attempt['id']}/answers/{question['id']}",
        json={"value": "x" * 20_000},
        headers=auth(student_token),
    )
    assert resp.status_code == 413
    assert resp.json()["detail"]["code"] == "PAYLOAD_TOO_LARGE"


def test_submit_after_deadline_records_expiry(
    client: TestClient, teacher_token: str, student_token: str, clock: FakeClock
) -> None:
    exam = create_test_exam(client, teacher_token, duration_minutes=1)
    question = add_test_question(client, teacher_token, exam["id"])
    attempt = start_test_attempt(client, student_token, exam["id"])
    client.put(
        f"/v1/attempts/{attempt['id']}/answers/{question['id']}",
        json={"value": "true"},
        headers=auth(student_token),
    )
    clock.advance(61)

    resp = _submit(
        client,
        student_token,
        attempt["id"],
        [{"question_id": question["id"], "value": "false"}],
    )
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "ATTEMPT_CLOSED"

    view = client.get(f"/v1/attempts/{attempt['id']}", headers=auth(student_token))
    body = view.json()
    assert body["status"] == "submitted"
    assert body["finish_reason"] == "expired"
    assert body["ended_at"] == T0 + 61
    # The saved draft was graded, the late submission was not.
    assert body["score"] == 1


# ---- teacher interventions ----


def test_extra_time_moves_the_deadline(
    client: TestClient, teacher_token: str, student_token: str, clock: FakeClock
) -> None:
    exam = create_test_exam(client, teacher_token, duration_minutes=1)
    attempt = start_test_attempt(client, student_token, exam["id"])

    resp = client.post(
        f"/v1/attempts/{attempt['id']}/extra-time",
        json={"seconds": 120},
        headers=auth(teacher_token),
    )
    assert resp.status_code == 200
    assert resp.json()["extra_time_secs"] == 120

    clock.advance(90)
    view = client.get(f"/v1/attempts/{attempt['id']}", headers=auth(student_token))
    assert view.json()["status"] == "in_progress"
    assert view.json()["seconds_left"] == 90


@pytest.mark.parametrize("seconds", [0, -30])
def test_extra_time_must_be_positive(
    client: TestClient, teacher_token: str, student_token: str, seconds: int
) -> None:
    exam = create_test_exam(client, teacher_token)
    attempt = start_test_attempt(client, student_token, exam["id"])
    resp = client.post(
        f"/v1/attempts/{attempt['id']}/extra-time",
        json={"seconds": seconds},
        headers=auth(teacher_token),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "INVALID_EXTRA_TIME"


def test_forgive_and_penalize_lives(
    client: TestClient, teacher_token: str, student_token: str
) -> None:
    exam = create_test_exam(client, teacher_token, lives_allowed=2)
    attempt = start_test_attempt(client, student_token, exam["id"])
    _event(client, student_token, attempt["id"], "copy")

    url = f"/v1/attempts/{attempt['id']}/lives"
    forgiven = client.post(url, json={"op": "forgive"}, headers=auth(teacher_token))
    assert forgiven.status_code == 200
    assert forgiven.json()["lives_used"] == 0

    client.post(url, json={"op": "penalize"}, headers=auth(teacher_token))
    final = client.post(url, json={"op": "penalize"}, headers=auth(teacher_token))
    assert final.json()["status"] == "submitted"
    assert final.json()["finish_reason"] == "lives_exhausted"

    closed = client.post(url, json={"op": "forgive"}, headers=auth(teacher_token))
    assert closed.status_code == 409


def test_unknown_lives_op_is_unprocessable(
    client: TestClient, teacher_token: str, student_token: str
) -> None:
    exam = create_test_exam(client, teacher_token)
    attempt = start_test_attempt(client, student_token, exam["id"])
    resp = client.post(
        f"/v1/attempts/{attempt['id']}/lives",
        json={"op": "double"},
        headers=auth(teacher_token),
    )
    assert resp.status_code == 422


def test_pause_and_resume(
    client: TestClient, teacher_token: str, student_token: str
) -> None:
    exam = create_test_exam(client, teacher_token)
    attempt = start_test_attempt(client, student_token, exam["id"])

    paused = client.post(
        f"/v1/attempts/{attempt['id']}/pause", headers=auth(teacher_token)
    )
    assert paused.status_code == 200
    assert paused.json()["paused"] is True

    resumed = client.post(
        f"/v1/attempts/{attempt['id']}/resume", headers=auth(teacher_token)
    )
    assert resumed.json()["paused"] is False


@pytest.mark.parametrize(
    "path,body",
    [
        ("grade", {"grades": []}),
        ("lives", {"op": "forgive"}),
        ("extra-time", {"seconds": 60}),
        ("pause", None),
        ("resume", None),
    ],
)
def test_interventions_need_exam_manager(
    client: TestClient,
    teacher_token: str,
    student_token: str,
    path: str,
    body: dict[str, Any] | None,
) -> None:
    exam = create_test_exam(client, teacher_token)
    attempt = start_test_attempt(client, student_token, exam["id"])
    other_teacher = mint_token(username="other@example.com", roles=["teacher"])

    for token in (student_token, other_teacher):
        resp = client.post(
            f"/v1/attempts/{attempt['id']}/{path}", json=body, headers=auth(token)
        )
        assert resp.status_code == 403


def test_admin_can_intervene(
    client: TestClient, teacher_token: str, student_token: str, admin_token: str
) -> None:
    exam = create_test_exam(client, teacher_token)
    attempt = start_test_attempt(client, student_token, exam["id"])
    resp = client.post(
        f"/v1/attempts/{attempt['id']}/pause", headers=auth(admin_token)
    )
    assert resp.status_code == 200


# ---- grading / review ----


def test_manual_grading_and_review(
    client: TestClient, teacher_token: str, student_token: str
) -> None:
    exam = create_test_exam(client, teacher_token, grading_mode="manual")
    question = add_test_question(
        client,
        teacher_token,
        exam["id"],
        kind="short_text",
        prompt="Name a prime.",
        expected_answer="7",
        points=4,
    )
    attempt = start_test_attempt(client, student_token, exam["id"])

    submitted = _submit(
        client,
        student_token,
        attempt["id"],
        [{"question_id": question["id"], "value": "13"}],
    ).json()
    assert submitted["grading_mode"] == "manual"
    assert submitted["score"] is None
    assert submitted["max_score"] == 4

    early = client.get(
        f"/v1/attempts/{attempt['id']}/review", headers=auth(student_token)
    )
    assert early.status_code == 403
    assert early.json()["detail"]["code"] == "REVIEW_NOT_AVAILABLE"

    # The owner reads the raw answer before grading it
    ungraded = client.get(
        f"/v1/attempts/{attempt['id']}/review", headers=auth(teacher_token)
    )
    assert ungraded.status_code == 200
    (pending,) = ungraded.json()["items"]
    assert pending["given"] == "13"
    assert pending["score"] is None

    draft = client.post(
        f"/v1/attempts/{attempt['id']}/grade",
        json={"grades": [{"question_id": question["id"], "score": 3}]},
        headers=auth(teacher_token),
    )
    assert draft.json()["status"] == "in_review"
    assert draft.json()["score"] == 3

    final = client.post(
        f"/v1/attempts/{attempt['id']}/grade",
        json={
            "grades": [
                {"question_id": question["id"], "score": 4, "feedback": "Also prime."}
            ],
            "finalize": True,
            "overall_feedback": "Well done.",
        },
        headers=auth(teacher_token),
    )
    assert final.status_code == 200
    assert final.json()["status"] == "graded"
    assert final.json()["score"] == 4

    review = client.get(
        f"/v1/attempts/{attempt['id']}/review", headers=auth(student_token)
    ).json()
    assert review["max_score"] == 4
    assert review["overall_feedback"] == "Well done."
    (item,) = review["items"]
    assert item["given"] == "13"
    assert item["expected_answer"] == "7"
    assert item["score"] == 4
    assert item["feedback"] == "Also prime."

    again = client.post(
        f"/v1/attempts/{attempt['id']}/grade",
        json={"grades": []},
        headers=auth(teacher_token),
    )
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "ATTEMPT_ALREADY_GRADED"


def test_grading_running_attempt_is_conflict(
    client: TestClient, teacher_token: str, student_token: str, exam_with_question
) -> None:
    exam, question = exam_with_question
    attempt = start_test_attempt(client, student_token, exam["id"])
    resp = client.post(
        f"/v1/attempts/{attempt['id']}/grade",
        json={"grades": [{"question_id": question["id"], "score": 1}]},
        headers=auth(teacher_token),
    )
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "ATTEMPT_NOT_SUBMITTED"


def test_negative_score_is_rejected(
    client: TestClient, teacher_token: str, student_token: str, exam_with_question
) -> None:
    exam, question = exam_with_question
    attempt = start_test_attempt(client, student_token, exam["id"])
    _submit(
        client,
        student_token,
        attempt["id"],
        [{"question_id": question["id"], "value": "true"}],
    )
    resp = client.post(
        f"/v1/attempts/{attempt['id']}/grade",
        json={"grades": [{"question_id": question["id"], "score": -1}]},
        headers=auth(teacher_token),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "INVALID_SCORE"


def test_auto_review_available_after_submit(
    client: TestClient, student_token: str, exam_with_question
) -> None:
    exam, question = exam_with_question
    attempt = start_test_attempt(client, student_token, exam["id"])

    running = client.get(
        f"/v1/attempts/{attempt['id']}/review", headers=auth(student_token)
    )
    assert running.status_code == 403

    _submit(
        client,
        student_token,
        attempt["id"],
        [{"question_id": question["id"], "value": "false"}],
    )
    review = client.get(
        f"/v1/attempts/{attempt['id']}/review", headers=auth(student_token)
    )
    assert review.status_code == 200
    (item,) = review.json()["items"]
    assert item["given"] == "false"
    assert item["score"] == 0
