# recruzy/api/admin_routes.py

from flask import current_app, jsonify, request
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from recruzy.auth.decorators import admin_required
from recruzy.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    ServiceError,
    ValidationError,
)
from recruzy.extensions import db, socketio
from recruzy.models import (
    ROLE_USER,
    TEST_STATUS_PUBLISHED,
    TEST_STATUSES,
    Question,
    Test,
    TestResult,
    User,
    UserTest,
    isoformat,
    utcnow,
)
from recruzy.schemas.test_schema import (
    AssignTestRequest,
    CreateTestRequest,
    ReconcileAssignmentsRequest,
    UpdateTestStatusRequest,
)
from recruzy.schemas.user_schema import CreateUserRequest
from recruzy.services.assignments import assign_missing_tests, assign_test_to_users
from recruzy.services.dashboard import (
    invalidate_user_views,
    per_test_statistics,
    per_user_statistics,
)
from recruzy.utils.validators import parse_json

from . import api_bp


def _get_test_or_404(test_id):
    test = db.session.get(Test, test_id)
    if test is None:
        raise NotFoundError("Test not found")
    return test


# =============================================================================
# СОГЛАСОВАНИЕ НАЗНАЧЕНИЙ
# =============================================================================


@api_bp.route("/users/<int:user_id>/assignments/reconcile", methods=["POST"])
@admin_required
def reconcile_user_assignments(user_id, actor):
    """
    Назначает пользователю все опубликованные тесты, которых у него нет.
    Тело запроса необязательно: {"testIds": [...], "dueDate": "..."}.
    """
    payload = parse_json(ReconcileAssignmentsRequest, allow_empty=True)

    missing = assign_missing_tests(
        user_id,
        test_ids=payload.test_ids,
        due_date=payload.due_date,
        trigger="repair",
    )
    current_app.logger.info(
        f"Admin {actor.user_id} reconciled assignments for user {user_id}: "
        f"{len(missing)} created"
    )
    return (
        jsonify(
            {
                "status": "success",
                "message": f"Assigned {len(missing)} missing tests",
                "assignedTestIds": sorted(missing),
            }
        ),
        200,
    )


# =============================================================================
# УПРАВЛЕНИЕ ТЕСТАМИ
# =============================================================================


@api_bp.route("/admin/tests", methods=["GET"])
@admin_required
def list_tests(actor):
    status = request.args.get("status")
    if status and status not in TEST_STATUSES:
        raise ValidationError(f"Unknown status: {status}")

    question_counts = (
        select(Question.test_id, func.count(Question.id).label("question_count"))
        .group_by(Question.test_id)
        .subquery()
    )
    query = (
        select(Test, func.coalesce(question_counts.c.question_count, 0))
        .outerjoin(question_counts, question_counts.c.test_id == Test.id)
        .order_by(Test.created_at.desc(), Test.id.desc())
    )
    if status:
        query = query.where(Test.status == status)

    try:
        rows = db.session.execute(query).all()
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to fetch tests") from e

    tests = []
    for test, count in rows:
        item = test.to_dict()
        item["question_count"] = count
        tests.append(item)
    return jsonify({"tests": tests}), 200


@api_bp.route("/admin/tests", methods=["POST"])
@admin_required
def create_test(actor):
    """Создает тест вместе с вопросами; опубликованный сразу назначается."""
    payload = parse_json(CreateTestRequest)

    test = Test(
        title=payload.title,
        topic=payload.topic,
        description=payload.description,
        duration=payload.duration,
        status=payload.status,
        created_by=actor.user_id,
    )
    for position, question in enumerate(payload.questions):
        test.questions.append(
            Question(
                text=question.text,
                options=question.options,
                correct_answer=question.correct_answer,
                difficulty=question.difficulty,
                explanation=question.explanation,
                position=position,
            )
        )

    try:
        db.session.add(test)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to create test: {e}", exc_info=True)
        raise PersistenceError("Failed to create test") from e

    current_app.logger.info(
        f"Admin {actor.user_id} created test {test.id} '{test.title}' "
        f"with {len(payload.questions)} questions ({test.status})"
    )

    assigned = set()
    if test.is_published:
        assigned = _assign_published(test.id, trigger="publish")

    return (
        jsonify(
            {
                "status": "success",
                "test": test.to_dict(with_questions=True, include_answers=True),
                "assignedCount": len(assigned),
            }
        ),
        201,
    )


def _assign_published(test_id, due_date=None, trigger="publish"):
    """Публикация не должна падать, если пользователей еще нет."""
    try:
        return assign_test_to_users(test_id, due_date=due_date, trigger=trigger)
    except ValidationError as e:
        current_app.logger.info(f"Test {test_id} published without assignments: {e.message}")
        return set()


@api_bp.route("/admin/tests/<int:test_id>/status", methods=["PATCH"])
@admin_required
def update_test_status(test_id, actor):
    payload = parse_json(UpdateTestStatusRequest)
    test = _get_test_or_404(test_id)

    previous = test.status
    test.status = payload.status
    test.updated_at = utcnow()
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError("Failed to update test status") from e

    assigned = set()
    if test.is_published:
        assigned = _assign_published(test.id, due_date=payload.due_date)

    socketio.emit(
        "update_needed",
        {"type": "test_status", "test_id": test.id, "status": test.status},
        to="admins",
    )
    current_app.logger.info(
        f"Admin {actor.user_id} changed test {test_id} status {previous} -> {test.status}"
    )
    return (
        jsonify(
            {
                "status": "success",
                "test": test.to_dict(),
                "assignedCount": len(assigned),
            }
        ),
        200,
    )


@api_bp.route("/admin/tests/<int:test_id>/assign", methods=["POST"])
@admin_required
def assign_test(test_id, actor):
    """
    Назначает тест всем пользователям или выбранным.
    Существующие назначения сохраняются; тест переводится в 'published'.
    """
    payload = parse_json(AssignTestRequest)
    test = _get_test_or_404(test_id)

    user_ids = payload.user_ids if payload.assignment_type == "specific" else None
    assigned = assign_test_to_users(
        test_id, user_ids=user_ids, due_date=payload.due_date, trigger="assign"
    )

    if test.status != TEST_STATUS_PUBLISHED:
        test.status = TEST_STATUS_PUBLISHED
        test.updated_at = utcnow()
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError("Failed to publish test") from e

    for user_id in assigned:
        socketio.emit(
            "update_needed",
            {"type": "new_assignment", "test_id": test_id},
            to=f"user:{user_id}",
        )

    return (
        jsonify(
            {
                "status": "success",
                "message": f"Test assigned to {len(assigned)} users",
                "assignedUserIds": sorted(assigned),
            }
        ),
        200,
    )


@api_bp.route("/admin/tests/<int:test_id>/assigned-users", methods=["GET"])
@admin_required
def get_assigned_users(test_id, actor):
    _get_test_or_404(test_id)
    rows = db.session.execute(
        select(UserTest, User)
        .join(User, User.id == UserTest.user_id)
        .where(UserTest.test_id == test_id)
        .order_by(User.username.asc())
    ).all()

    users = [
        {
            "user_id": user.id,
            "username": user.username,
            "email": user.email,
            "status": assignment.status,
            "assigned_at": isoformat(assignment.assigned_at),
            "due_date": isoformat(assignment.due_date),
            "completed_at": isoformat(assignment.completed_at),
        }
        for assignment, user in rows
    ]
    return jsonify({"users": users}), 200


@api_bp.route("/admin/tests/<int:test_id>", methods=["DELETE"])
@admin_required
def delete_test(test_id, actor):
    """
    Удаляет тест вместе с вопросами, назначениями и результатами.
    """
    test = _get_test_or_404(test_id)

    affected = set(
        db.session.scalars(select(UserTest.user_id).where(UserTest.test_id == test_id))
    ) | set(
        db.session.scalars(select(TestResult.user_id).where(TestResult.test_id == test_id))
    )
    try:
        db.session.execute(delete(TestResult).where(TestResult.test_id == test_id))
        db.session.execute(delete(UserTest).where(UserTest.test_id == test_id))
        db.session.delete(test)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to delete test {test_id}: {e}", exc_info=True)
        raise PersistenceError("Failed to delete test") from e

    invalidate_user_views(*sorted(affected))
    socketio.emit("update_needed", {"type": "test_deleted", "test_id": test_id}, to="admins")
    current_app.logger.info(
        f"Admin {actor.user_id} deleted test {test_id} ({len(affected)} users affected)"
    )
    return jsonify({"status": "success"}), 200


# =============================================================================
# ПОЛЬЗОВАТЕЛИ И РЕЗУЛЬТАТЫ
# =============================================================================


@api_bp.route("/admin/users", methods=["GET"])
@admin_required
def list_users(actor):
    users = db.session.scalars(
        select(User).where(User.role == ROLE_USER).order_by(User.username.asc())
    ).all()
    return jsonify({"users": [user.to_dict() for user in users]}), 200


@api_bp.route("/admin/users", methods=["POST"])
@admin_required
def create_user(actor):
    """
    Создает учетную запись. Тестируемому сразу назначаются все
    опубликованные тесты; сбой назначения не отменяет создание.
    """
    payload = parse_json(CreateUserRequest)
    email = payload.email.lower()

    taken = db.session.scalars(
        select(User.id).where(
            (User.username == payload.username) | (func.lower(User.email) == email)
        )
    ).first()
    if taken is not None:
        raise ConflictError("Username or email already exists")

    user = User(username=payload.username, email=email, role=payload.role)
    user.set_password(payload.password)
    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise ConflictError("Username or email already exists") from e
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError("Failed to create user") from e

    current_app.logger.info(
        f"Admin {actor.user_id} created user {user.id} ({user.username}, {user.role})"
    )

    assigned = set()
    if user.role == ROLE_USER:
        try:
            assigned = assign_missing_tests(user.id, trigger="admin")
        except ServiceError as e:
            current_app.logger.error(
                f"Failed to assign tests to new user {user.id}: {e.message}"
            )

    return (
        jsonify(
            {
                "status": "success",
                "message": "User created successfully",
                "user": user.to_dict(),
                "assignedTests": len(assigned),
            }
        ),
        201,
    )


@api_bp.route("/admin/users/<int:user_id>", methods=["DELETE"])
@admin_required
def delete_user(user_id, actor):
    """Удаляет пользователя вместе с его назначениями и результатами."""
    if user_id == actor.user_id:
        raise ValidationError("You cannot delete your own account")

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")

    try:
        db.session.execute(delete(TestResult).where(TestResult.user_id == user_id))
        db.session.execute(delete(UserTest).where(UserTest.user_id == user_id))
        # Тесты, созданные удаляемым администратором, остаются без автора
        db.session.execute(
            update(Test).where(Test.created_by == user_id).values(created_by=None)
        )
        db.session.delete(user)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to delete user {user_id}: {e}", exc_info=True)
        raise PersistenceError("Failed to delete user") from e

    invalidate_user_views(user_id)
    current_app.logger.info(f"Admin {actor.user_id} deleted user {user_id}")
    return jsonify({"status": "success"}), 200


@api_bp.route("/admin/results", methods=["GET"])
@admin_required
def list_results(actor):
    page = request.args.get("page", 1, type=int)
    per_page = min(
        max(request.args.get("per_page", 20, type=int), 1),
        current_app.config.get("MAX_RESULTS_PER_PAGE", 100),
    )
    test_id = request.args.get("test_id", type=int)

    query = (
        select(TestResult, User, Test)
        .join(User, User.id == TestResult.user_id)
        .join(Test, Test.id == TestResult.test_id)
        .order_by(TestResult.completed_at.desc(), TestResult.id.desc())
    )
    count_query = select(func.count(TestResult.id))
    if test_id:
        query = query.where(TestResult.test_id == test_id)
        count_query = count_query.where(TestResult.test_id == test_id)

    total = db.session.scalar(count_query)
    rows = db.session.execute(
        query.limit(per_page).offset((max(page, 1) - 1) * per_page)
    ).all()

    results = []
    for result, user, test in rows:
        item = result.to_dict()
        item["username"] = user.username
        item["test_title"] = test.title
        results.append(item)

    return (
        jsonify(
            {
                "results": results,
                "total": total,
                "page": page,
                "per_page": per_page,
            }
        ),
        200,
    )


@api_bp.route("/admin/analytics/tests", methods=["GET"])
@admin_required
def analytics_by_test(actor):
    try:
        return jsonify({"tests": per_test_statistics()}), 200
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to compute analytics") from e


@api_bp.route("/admin/analytics/users", methods=["GET"])
@admin_required
def analytics_by_user(actor):
    try:
        return jsonify({"data": per_user_statistics()}), 200
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to compute analytics") from e
