# recruzy/services/results.py
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from recruzy.auth.actor import Actor
from recruzy.errors import (
    AuthorizationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from recruzy.extensions import db, socketio
from recruzy.metrics import RESULTS_RECORDED_TOTAL, SCORING_DURATION_SECONDS
from recruzy.models import (
    ASSIGNMENT_COMPLETED,
    ASSIGNMENT_STARTED,
    Test,
    TestResult,
    UserTest,
    utcnow,
)
from recruzy.services.dashboard import invalidate_user_views
from recruzy.services.scoring import AnswerKey, score

VIOLATION_FIELDS = {
    "tabSwitches": "tab_switch_attempts",
    "noFace": "no_face_violations",
    "multipleFaces": "multiple_faces_violations",
    "faceChanged": "face_changed_violations",
}


def _find_by_submission(session, user_id, test_id, submission_id):
    """
    Ранее сохраненный результат той же попытки.

    submission_id уникален в пределах пользователя, поэтому повтор id
    для другого теста отклоняется, а не подменяется чужим результатом.
    """
    existing = session.scalars(
        select(TestResult).where(
            TestResult.user_id == user_id, TestResult.submission_id == submission_id
        )
    ).first()
    if existing is not None and existing.test_id != test_id:
        raise ValidationError(
            f"submissionId {submission_id} was already used for another test"
        )
    return existing


def _load_open_test(session, test_id) -> Test:
    test = session.get(Test, test_id)
    if test is None:
        raise NotFoundError(f"Test {test_id} not found")
    if not test.is_published:
        raise ValidationError("Test is not open for submissions")
    return test


def record_result(
    actor: Actor,
    user_id: int,
    test_id: int,
    answers: Dict[str, Any],
    elapsed_seconds: int,
    started_at: Optional[datetime] = None,
    violations: Optional[Dict[str, int]] = None,
    client_errors: Optional[List[Any]] = None,
    submission_id: Optional[str] = None,
    session=None,
) -> Tuple[TestResult, bool]:
    """
    Оценивает попытку и сохраняет результат.

    Результат и перевод назначения в статус 'completed' фиксируются одной
    транзакцией: либо записано все, либо ничего.

    Returns:
        (результат, создан_ли_новый). Повтор с тем же submission_id
        возвращает уже сохраненную запись.
    """
    session = session or db.session

    if not actor.owns(user_id):
        raise AuthorizationError("Results can only be submitted by their owner")
    if answers is None:
        raise ValidationError("Answers are required")

    try:
        if submission_id:
            existing = _find_by_submission(session, user_id, test_id, submission_id)
            if existing is not None:
                current_app.logger.info(
                    f"Duplicate submission {submission_id} for user {user_id}, "
                    f"returning result {existing.id}"
                )
                return existing, False

        test = _load_open_test(session, test_id)
        with SCORING_DURATION_SECONDS.time():
            key = AnswerKey.from_questions(test.questions)
            outcome = score(answers, key)

        counters = violations or {}
        now = utcnow()
        result = TestResult(
            user_id=user_id,
            test_id=test_id,
            submission_id=submission_id,
            score=outcome.score,
            correct_count=outcome.correct_count,
            total_questions=outcome.total,
            answers=answers,
            time_taken=elapsed_seconds or 0,
            started_at=started_at or now,
            completed_at=now,
            client_errors=client_errors,
            **{column: counters.get(name) or 0 for name, column in VIOLATION_FIELDS.items()},
        )
        session.add(result)

        assignment = session.scalars(
            select(UserTest).where(
                UserTest.user_id == user_id, UserTest.test_id == test_id
            )
        ).first()
        if assignment is not None:
            assignment.status = ASSIGNMENT_COMPLETED
            assignment.completed_at = now
        else:
            current_app.logger.warning(
                f"User {user_id} submitted test {test_id} without an assignment"
            )

        session.commit()

    except IntegrityError as e:
        session.rollback()
        # Гонка двух одинаковых отправок: побеждает первая
        if submission_id:
            existing = _find_by_submission(session, user_id, test_id, submission_id)
            if existing is not None:
                return existing, False
        current_app.logger.error(f"DB integrity error in record_result: {e}", exc_info=True)
        raise PersistenceError("Failed to save test result") from e
    except SQLAlchemyError as e:
        session.rollback()
        current_app.logger.error(f"Failed to save test result: {e}", exc_info=True)
        raise PersistenceError("Failed to save test result") from e

    # --- Действия после успешного сохранения ---
    invalidate_user_views(user_id)
    RESULTS_RECORDED_TOTAL.labels(result="passed" if result.passed else "failed").inc()
    socketio.emit(
        "update_needed",
        {"type": "new_result", "result_id": result.id, "test_id": test_id},
        to="admins",
    )

    current_app.logger.info(
        f"Result saved: user={user_id}, test={test_id}, score={result.score}%, "
        f"correct={result.correct_count}/{result.total_questions}, "
        f"violations={result.total_violations}"
    )
    return result, True


def check_attempt(actor: Actor, test_id: int, session=None) -> UserTest:
    """
    Проверяет, что пользователь может проходить тест: есть назначение,
    тест опубликован и (без ALLOW_RETAKES) еще не пройден.
    """
    session = session or db.session

    assignment = session.scalars(
        select(UserTest).where(
            UserTest.user_id == actor.user_id, UserTest.test_id == test_id
        )
    ).first()
    if assignment is None:
        raise AuthorizationError("You are not assigned to this test")

    test = session.get(Test, test_id)
    if test is None or not test.is_published:
        raise NotFoundError("Test not found or not available")

    ensure_not_completed(actor, test_id, session=session)
    return assignment


def start_test(actor: Actor, test_id: int, session=None) -> UserTest:
    """Переводит назначение в статус 'started' (assigned -> started)."""
    session = session or db.session

    try:
        assignment = check_attempt(actor, test_id, session=session)
        if assignment.status != ASSIGNMENT_STARTED:
            assignment.status = ASSIGNMENT_STARTED
            assignment.started_at = utcnow()
            session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        current_app.logger.error(f"Failed to start test {test_id}: {e}", exc_info=True)
        raise PersistenceError("Failed to start test") from e

    invalidate_user_views(actor.user_id)
    current_app.logger.info(f"User {actor.user_id} started test {test_id}")
    return assignment


def ensure_not_completed(actor: Actor, test_id: int, session=None):
    """Запрещает повторное прохождение, если ALLOW_RETAKES выключен."""
    if current_app.config.get("ALLOW_RETAKES"):
        return
    session = session or db.session
    completed = session.scalars(
        select(TestResult.id).where(
            TestResult.user_id == actor.user_id, TestResult.test_id == test_id
        )
    ).first()
    if completed is not None:
        raise ValidationError("You have already completed this test")
