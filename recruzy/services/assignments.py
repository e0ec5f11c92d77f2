# recruzy/services/assignments.py
"""
Согласование назначений: у каждого пользователя должен быть ровно один
UserTest на каждый опубликованный тест.
"""

from typing import Iterable, Optional, Set, Tuple

from flask import current_app
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from recruzy.errors import NotFoundError, PersistenceError, ValidationError
from recruzy.extensions import db
from recruzy.metrics import ASSIGNMENTS_CREATED_TOTAL
from recruzy.models import (
    ASSIGNMENT_ASSIGNED,
    ROLE_USER,
    TEST_STATUS_PUBLISHED,
    Test,
    User,
    UserTest,
    utcnow,
)
from recruzy.services.dashboard import invalidate_user_views


def reconcile(published_tests: Iterable, existing_assignments: Iterable) -> Set:
    """Tests that still have to be assigned: published minus existing."""
    return set(published_tests) - set(existing_assignments)


# =============================================================================
# ЧТЕНИЕ ТЕКУЩЕГО СОСТОЯНИЯ
# =============================================================================


def published_test_ids(session) -> Set[int]:
    return set(
        session.scalars(select(Test.id).where(Test.status == TEST_STATUS_PUBLISHED))
    )


def assigned_test_ids(session, user_id: int) -> Set[int]:
    return set(session.scalars(select(UserTest.test_id).where(UserTest.user_id == user_id)))


def assigned_user_ids(session, test_id: int) -> Set[int]:
    return set(session.scalars(select(UserTest.user_id).where(UserTest.test_id == test_id)))


def _existing_ids(session, model, ids: Set[int]) -> Set[int]:
    if not ids:
        return set()
    return set(session.scalars(select(model.id).where(model.id.in_(ids))))


# =============================================================================
# ВСТАВКА С ИГНОРИРОВАНИЕМ КОНФЛИКТОВ
# =============================================================================


def _insert_ignoring_conflicts(session, rows) -> Set[Tuple[int, int]]:
    """
    INSERT ... ON CONFLICT (user_id, test_id) DO NOTHING RETURNING user_id, test_id.

    Параллельное согласование могло уже вставить ту же пару; такой конфликт
    не является ошибкой. Возвращает только реально вставленные пары.
    """
    if not rows:
        return set()

    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        insert = None

    if insert is not None:
        stmt = (
            insert(UserTest)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["user_id", "test_id"])
            .returning(UserTest.user_id, UserTest.test_id)
        )
        return {tuple(row) for row in session.execute(stmt)}

    # Прочие диалекты: по строке в SAVEPOINT
    inserted = set()
    for row in rows:
        try:
            with session.begin_nested():
                session.add(UserTest(**row))
            inserted.add((row["user_id"], row["test_id"]))
        except IntegrityError:
            current_app.logger.info(
                f"Assignment user={row['user_id']} test={row['test_id']} already exists"
            )
    return inserted


def _assignment_rows(pairs, due_date):
    now = utcnow()
    return [
        {
            "user_id": user_id,
            "test_id": test_id,
            "assigned_at": now,
            "due_date": due_date,
            "status": ASSIGNMENT_ASSIGNED,
        }
        for user_id, test_id in pairs
    ]


def _commit_assignments(session, rows, trigger) -> Set[Tuple[int, int]]:
    try:
        inserted = _insert_ignoring_conflicts(session, rows)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        current_app.logger.error(f"Failed to create assignments: {e}", exc_info=True)
        raise PersistenceError("Failed to create assignments") from e

    skipped = len(rows) - len(inserted)
    if skipped:
        current_app.logger.info(
            f"{skipped} assignments were created concurrently and skipped ({trigger})"
        )
    if inserted:
        ASSIGNMENTS_CREATED_TOTAL.labels(trigger=trigger).inc(len(inserted))
        invalidate_user_views(*sorted({user_id for user_id, _ in inserted}))
    return inserted


# =============================================================================
# ПУБЛИЧНЫЕ ОПЕРАЦИИ
# =============================================================================


def assign_missing_tests(
    user_id: int,
    test_ids: Optional[Iterable[int]] = None,
    due_date=None,
    trigger: str = "repair",
    session=None,
) -> Set[int]:
    """
    Назначает пользователю все недостающие тесты.

    Args:
        user_id: Пользователь, чьи назначения согласуются.
        test_ids: Явный список тестов вместо "всех опубликованных".
        due_date: Срок сдачи для создаваемых назначений.
        trigger: Метка для метрики (registration, repair, cli).

    Returns:
        Множество id тестов, назначения на которые созданы этим вызовом.
    """
    session = session or db.session

    try:
        if session.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found")

        # Явный пустой список означает "ничего", а не "все опубликованные"
        if test_ids is not None:
            target = set(test_ids)
            unknown = target - _existing_ids(session, Test, target)
            if unknown:
                raise NotFoundError(
                    f"Tests not found: {', '.join(str(t) for t in sorted(unknown))}"
                )
        else:
            target = published_test_ids(session)

        # Существующие назначения читаются заново непосредственно перед вычитанием
        existing = assigned_test_ids(session, user_id)
    except SQLAlchemyError as e:
        current_app.logger.error(
            f"Failed to read assignments for user {user_id}: {e}", exc_info=True
        )
        raise PersistenceError("Failed to fetch existing assignments") from e

    missing = reconcile(target, existing)
    current_app.logger.info(
        f"Reconciling assignments for user {user_id}: "
        f"{len(target)} target, {len(existing)} existing, {len(missing)} missing"
    )

    rows = _assignment_rows(((user_id, test_id) for test_id in sorted(missing)), due_date)
    inserted = _commit_assignments(session, rows, trigger)
    return {test_id for _, test_id in inserted}


def assign_test_to_users(
    test_id: int,
    user_ids: Optional[Iterable[int]] = None,
    due_date=None,
    trigger: str = "assign",
    session=None,
) -> Set[int]:
    """
    Назначает один тест пользователям (всем с ролью 'user' или явному списку).
    Существующие назначения не удаляются и не дублируются.
    """
    session = session or db.session

    try:
        if session.get(Test, test_id) is None:
            raise NotFoundError(f"Test {test_id} not found")

        query = select(User.id).where(User.role == ROLE_USER)
        if user_ids is not None:
            requested = set(user_ids)
            if not requested:
                raise ValidationError("No users selected")
            query = query.where(User.id.in_(requested))
        target = set(session.scalars(query))
        if not target:
            raise ValidationError("No valid users found for assignment")

        existing = assigned_user_ids(session, test_id)
    except SQLAlchemyError as e:
        current_app.logger.error(
            f"Failed to read assignments for test {test_id}: {e}", exc_info=True
        )
        raise PersistenceError("Failed to fetch existing assignments") from e

    missing = reconcile(target, existing)
    current_app.logger.info(
        f"Assigning test {test_id}: {len(target)} users, {len(missing)} new assignments"
    )

    rows = _assignment_rows(((user_id, test_id) for user_id in sorted(missing)), due_date)
    inserted = _commit_assignments(session, rows, trigger)
    return {user_id for user_id, _ in inserted}
