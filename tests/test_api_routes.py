# Файл: tests/test_api_routes.py
from sqlalchemy import select

from recruzy.models import TestResult, UserTest
from tests.fixtures.sample_data import (
    TestResultFactory,
    UserFactory,
    UserTestFactory,
    answer_sheet,
    make_test,
)


def _assign(user, test, **kwargs):
    return UserTestFactory(user=user, test=test, **kwargs)


# --- Аутентификация ---


def test_anonymous_requests_are_rejected(client):
    for path in ("/api/tests", "/api/history", "/api/dashboard", "/api/report/download"):
        response = client.get(path)
        assert response.status_code == 401
        assert response.get_json()["status"] == "error"


def test_admin_cannot_use_taker_endpoints(admin_client):
    response = admin_client.post("/api/submissions", json={"testId": 1, "answers": {}})
    assert response.status_code == 403


# --- Назначенные тесты ---


def test_list_assigned_tests(user_client, regular_user, db_session):
    active = make_test()
    done = make_test()
    _assign(regular_user, active)
    _assign(regular_user, done, status="completed")

    response = user_client.get("/api/tests")

    assert response.status_code == 200
    tests = response.get_json()["tests"]
    assert [t["id"] for t in tests] == [active.id]
    assert tests[0]["assignment_status"] == "assigned"


def test_get_test_hides_correct_answers(user_client, regular_user, db_session):
    test = make_test(correct_answers=(1, 2))
    _assign(regular_user, test)

    response = user_client.get(f"/api/tests/{test.id}")

    assert response.status_code == 200
    questions = response.get_json()["questions"]
    assert len(questions) == 2
    assert all("correct_answer" not in q for q in questions)


def test_get_unassigned_test_is_forbidden(user_client, db_session):
    test = make_test()
    response = user_client.get(f"/api/tests/{test.id}")
    assert response.status_code == 403


def test_get_draft_test_is_not_found(user_client, regular_user, db_session):
    test = make_test(status="draft")
    _assign(regular_user, test)
    response = user_client.get(f"/api/tests/{test.id}")
    assert response.status_code == 404


def test_start_test(user_client, regular_user, db_session):
    test = make_test()
    _assign(regular_user, test)

    response = user_client.post(f"/api/tests/{test.id}/start")

    assert response.status_code == 200
    assert response.get_json()["assignment"]["status"] == "started"


# --- Отправка результатов ---


def test_submit_result(user_client, regular_user, db_session):
    test = make_test(correct_answers=(0, 1, 2, 3))
    _assign(regular_user, test)

    response = user_client.post(
        "/api/submissions",
        json={
            "testId": test.id,
            "answers": answer_sheet(test, [0, 1, 0, 3]),
            "timeTaken": 120,
            "startedAt": "2025-01-10T09:00:00Z",
            "violations": {"tabSwitches": 1},
            "submissionId": "sub-001",
        },
    )

    assert response.status_code == 201
    data = response.get_json()
    assert data["score"] == 75
    assert data["correctCount"] == 3
    assert data["totalQuestions"] == 4
    assert data["passed"] is True

    assignment = db_session.scalars(select(UserTest)).one()
    assert assignment.status == "completed"


def test_resubmission_is_idempotent(user_client, regular_user, db_session):
    test = make_test(correct_answers=(0, 1))
    _assign(regular_user, test)
    payload = {"testId": test.id, "answers": {}, "submissionId": "retry-me"}

    first = user_client.post("/api/submissions", json=payload)
    second = user_client.post("/api/submissions", json=payload)

    assert first.status_code == 201
    assert second.status_code == 200
    assert first.get_json()["resultId"] == second.get_json()["resultId"]
    assert len(db_session.scalars(select(TestResult)).all()) == 1


def test_submission_id_cannot_cover_another_test(user_client, regular_user, db_session):
    first_test, second_test = make_test(), make_test()
    _assign(regular_user, first_test)
    _assign(regular_user, second_test)

    user_client.post(
        "/api/submissions",
        json={"testId": first_test.id, "answers": {}, "submissionId": "shared"},
    )
    response = user_client.post(
        "/api/submissions",
        json={"testId": second_test.id, "answers": {}, "submissionId": "shared"},
    )

    assert response.status_code == 400
    assert "another test" in response.get_json()["error"]
    assignment = db_session.scalars(
        select(UserTest).where(UserTest.test_id == second_test.id)
    ).one()
    assert assignment.status == "assigned"


def test_submit_invalid_payload(user_client, db_session):
    response = user_client.post("/api/submissions", json={"answers": "nope"})
    assert response.status_code == 400
    data = response.get_json()
    assert data["error"] == "Invalid input data"
    assert data["details"]


def test_submit_empty_body(user_client, db_session):
    response = user_client.post("/api/submissions", data="", content_type="application/json")
    assert response.status_code == 400


def test_submit_negative_violation_counter(user_client, db_session):
    test = make_test()
    response = user_client.post(
        "/api/submissions",
        json={"testId": test.id, "answers": {}, "violations": {"noFace": -1}},
    )
    assert response.status_code == 400


def test_submit_unknown_test(user_client, db_session):
    response = user_client.post("/api/submissions", json={"testId": 9999, "answers": {}})
    assert response.status_code == 404


# --- Результаты и история ---


def test_owner_can_view_result(user_client, regular_user, db_session):
    result = TestResultFactory(user=regular_user, score=88)
    response = user_client.get(f"/api/results/{result.id}")
    assert response.status_code == 200
    data = response.get_json()
    assert data["score"] == 88
    assert "questions" in data["test"]


def test_foreign_result_is_forbidden(user_client, db_session):
    result = TestResultFactory(user=UserFactory())
    response = user_client.get(f"/api/results/{result.id}")
    assert response.status_code == 403


def test_admin_can_view_any_result(admin_client, db_session):
    result = TestResultFactory()
    response = admin_client.get(f"/api/results/{result.id}")
    assert response.status_code == 200


def test_missing_result(user_client, db_session):
    assert user_client.get("/api/results/123456").status_code == 404


def test_history_only_contains_own_results(user_client, regular_user, db_session):
    mine = TestResultFactory(user=regular_user)
    TestResultFactory(user=UserFactory())

    response = user_client.get("/api/history")

    assert response.status_code == 200
    assert [r["id"] for r in response.get_json()["results"]] == [mine.id]


def test_dashboard(user_client, regular_user, db_session):
    _assign(regular_user, make_test())
    TestResultFactory(user=regular_user, score=80)
    TestResultFactory(user=regular_user, score=61)

    response = user_client.get("/api/dashboard")

    assert response.status_code == 200
    data = response.get_json()
    assert data["activeTestsCount"] == 1
    assert data["testsCompleted"] == 2
    assert data["averageScore"] == 71
    assert len(data["recentResults"]) == 2


def test_performance(user_client, regular_user, db_session):
    python = make_test(topic="Python")
    sql = make_test(topic="SQL")
    TestResultFactory(user=regular_user, test=python, score=90)
    TestResultFactory(user=regular_user, test=sql, score=40)

    response = user_client.get("/api/performance")

    assert response.status_code == 200
    data = response.get_json()
    assert data["strengths"][0] == {"skill": "Python", "score": 90}
    assert data["skillGaps"][0] == {"skill": "SQL", "score": 60}
    assert data["testsCompleted"] == 2


def test_report_download(user_client, regular_user, db_session):
    TestResultFactory(user=regular_user, score=55)

    response = user_client.get("/api/report/download")

    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    disposition = response.headers["Content-Disposition"]
    assert f"report_{regular_user.username}_" in disposition
    lines = response.get_data(as_text=True).strip().splitlines()
    assert lines[0].startswith("result_id,test_title")
    assert len(lines) == 2
