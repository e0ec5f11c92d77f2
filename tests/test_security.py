# Файл: tests/test_security.py
from sqlalchemy import select

from recruzy.models import TestResult, User
from tests.fixtures.sample_data import TestResultFactory, UserFactory, make_test


class TestSecurity:
    def test_sql_injection_protection(self, admin_client, db_session):
        """Идентификаторы в URL типизированы: строка не доходит до запроса."""
        malicious_id = "1; DROP TABLE users; --"
        response = admin_client.post(f"/api/users/{malicious_id}/assignments/reconcile")

        assert response.status_code == 404
        assert db_session.scalars(select(User)).first() is not None

    def test_sql_injection_in_login(self, client, db_session):
        UserFactory(username="victim")
        response = client.post(
            "/login", json={"login": "victim' OR '1'='1", "password": "anything"}
        )
        assert response.status_code == 401

    def test_xss_payload_is_stored_as_data(self, user_client, regular_user, db_session):
        xss_payload = '<script>alert("XSS")</script>'
        test = make_test(correct_answers=(0,))

        response = user_client.post(
            "/api/submissions",
            json={"testId": test.id, "answers": {}, "clientErrors": [xss_payload]},
        )

        assert response.status_code == 201
        assert response.mimetype == "application/json"

    def test_user_cannot_submit_for_another_user(self, user_client, regular_user, db_session):
        """Владелец результата всегда берется из сессии, а не из тела запроса."""
        victim = UserFactory()
        test = make_test(correct_answers=(0,))

        response = user_client.post(
            "/api/submissions",
            json={"testId": test.id, "answers": {}, "userId": victim.id},
        )

        assert response.status_code == 201
        result_id = response.get_json()["resultId"]
        result = db_session.get(TestResult, result_id)
        assert result.user_id == regular_user.id

    def test_invalid_submission_id(self, user_client, db_session):
        test = make_test()
        response = user_client.post(
            "/api/submissions",
            json={"testId": test.id, "answers": {}, "submissionId": "../../etc"},
        )
        assert response.status_code == 400

    def test_taker_cannot_reach_admin_endpoints(self, user_client, db_session):
        for method, path in (
            ("get", "/api/admin/tests"),
            ("get", "/api/admin/results"),
            ("get", "/api/admin/analytics/tests"),
            ("post", "/api/admin/tests/1/assign"),
        ):
            response = getattr(user_client, method)(path)
            assert response.status_code == 403

    def test_request_id_header(self, client, db_session):
        response = client.get("/health", headers={"X-Request-ID": "spoofed"})
        assert response.headers["X-Request-ID"] != "spoofed"

    def test_oversized_payload(self, user_client, db_session):
        response = user_client.post(
            "/api/submissions",
            data="x" * (3 * 1024 * 1024),
            content_type="application/json",
        )
        assert response.status_code in (400, 413)

    def test_result_ids_are_not_enumerable(self, user_client, db_session):
        others = [TestResultFactory() for _ in range(3)]
        for result in others:
            assert user_client.get(f"/api/results/{result.id}").status_code == 403
