# recruzy/api/routes.py

import csv
import io

from flask import Response, current_app, jsonify
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from recruzy.auth.decorators import login_required, user_required
from recruzy.errors import AuthorizationError, NotFoundError, PersistenceError
from recruzy.extensions import db, limiter
from recruzy.models import Test, TestResult, User, UserTest, isoformat, utcnow
from recruzy.schemas.result_schema import SubmitResultRequest
from recruzy.services.dashboard import (
    active_assignments,
    dashboard_data,
    performance_data,
    user_results,
)
from recruzy.services.results import ensure_not_completed, record_result, start_test
from recruzy.utils.sanitizers import report_filename
from recruzy.utils.validators import parse_json

from . import api_bp

REPORT_COLUMNS = (
    "result_id",
    "test_title",
    "topic",
    "score",
    "passed",
    "time_taken_sec",
    "completed_at",
    "tab_switches",
    "no_face",
    "multiple_faces",
    "face_changed",
)


# =============================================================================
# ТЕСТЫ, НАЗНАЧЕННЫЕ ПОЛЬЗОВАТЕЛЮ
# =============================================================================


@api_bp.route("/tests", methods=["GET"])
@user_required
def list_assigned_tests(actor):
    """Незавершенные назначения пользователя вместе с данными тестов."""
    try:
        rows = active_assignments(actor.user_id)
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to fetch assigned tests") from e

    tests = []
    for assignment, test in rows:
        item = test.to_dict()
        item["assignment_status"] = assignment.status
        item["assigned_at"] = isoformat(assignment.assigned_at)
        item["due_date"] = isoformat(assignment.due_date)
        tests.append(item)
    return jsonify({"tests": tests}), 200


@api_bp.route("/tests/<int:test_id>", methods=["GET"])
@user_required
def get_test_for_taker(test_id, actor):
    """
    Возвращает тест с вопросами (без правильных ответов) назначенному
    пользователю.
    """
    assignment = db.session.scalars(
        select(UserTest).where(
            UserTest.user_id == actor.user_id, UserTest.test_id == test_id
        )
    ).first()
    if assignment is None:
        raise AuthorizationError("You are not assigned to this test")

    test = db.session.get(Test, test_id)
    if test is None or not test.is_published:
        raise NotFoundError("Test not found or not published")

    ensure_not_completed(actor, test_id)

    data = test.to_dict(with_questions=True, include_answers=False)
    data["assignment_status"] = assignment.status
    data["assigned_at"] = isoformat(assignment.assigned_at)
    data["due_date"] = isoformat(assignment.due_date)

    current_app.logger.info(
        f"User {actor.user_id} opened test {test_id} ({len(test.questions)} questions)"
    )
    return jsonify({"test": data, "questions": data["questions"]}), 200


@api_bp.route("/tests/<int:test_id>/start", methods=["POST"])
@user_required
def start_assigned_test(test_id, actor):
    assignment = start_test(actor, test_id)
    return (
        jsonify(
            {
                "status": "success",
                "message": "Test started successfully",
                "assignment": assignment.to_dict(),
            }
        ),
        200,
    )


# =============================================================================
# ОТПРАВКА РЕЗУЛЬТАТОВ
# =============================================================================


@api_bp.route("/submissions", methods=["POST"])
@limiter.limit("30 per minute")
@user_required
def submit_result(actor):
    """
    Оценивает и сохраняет попытку текущего пользователя.
    Повтор с тем же submissionId возвращает уже сохраненный результат.
    """
    payload = parse_json(SubmitResultRequest)

    result, created = record_result(
        actor,
        user_id=actor.user_id,
        test_id=payload.test_id,
        answers=payload.answers,
        elapsed_seconds=payload.time_taken,
        started_at=payload.started_at,
        violations=payload.violations.model_dump(),
        client_errors=payload.client_errors,
        submission_id=payload.submission_id,
    )

    response = {
        "status": "success",
        "message": "Results saved successfully" if created else "Results already saved",
        "resultId": result.id,
        "score": result.score,
        "correctCount": result.correct_count,
        "totalQuestions": result.total_questions,
        "passed": result.passed,
    }
    return jsonify(response), 201 if created else 200


@api_bp.route("/results/<int:result_id>", methods=["GET"])
@login_required
def get_result(result_id, actor):
    """Результат доступен владельцу и администраторам."""
    result = db.session.get(TestResult, result_id)
    if result is None:
        raise NotFoundError("Result not found")
    if not (actor.is_admin or actor.owns(result.user_id)):
        raise AuthorizationError("You cannot view this result")

    data = result.to_dict()
    data["test"] = result.test.to_dict(with_questions=True, include_answers=True)
    return jsonify(data), 200


@api_bp.route("/history", methods=["GET"])
@user_required
def get_history(actor):
    try:
        rows = user_results(actor.user_id)
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to fetch test history") from e

    results = []
    for result, test in rows:
        item = result.to_dict()
        item["test_title"] = test.title
        item["topic"] = test.topic
        results.append(item)
    return jsonify({"results": results}), 200


@api_bp.route("/dashboard", methods=["GET"])
@user_required
def get_dashboard(actor):
    try:
        return jsonify(dashboard_data(actor.user_id)), 200
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to fetch dashboard data") from e


@api_bp.route("/performance", methods=["GET"])
@user_required
def get_performance(actor):
    try:
        return jsonify(performance_data(actor.user_id)), 200
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to fetch performance data") from e


@api_bp.route("/report/download", methods=["GET"])
@user_required
def download_report(actor):
    """CSV-отчет по всем попыткам пользователя."""
    user = db.session.get(User, actor.user_id)
    rows = user_results(actor.user_id)

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(REPORT_COLUMNS)
    for result, test in rows:
        writer.writerow(
            [
                result.id,
                test.title,
                test.topic,
                result.score,
                "yes" if result.passed else "no",
                result.time_taken,
                isoformat(result.completed_at),
                result.tab_switch_attempts,
                result.no_face_violations,
                result.multiple_faces_violations,
                result.face_changed_violations,
            ]
        )

    filename = report_filename(user.username, utcnow())
    return Response(
        buffer.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
