# recruzy/services/dashboard.py
"""Сводки для пользовательских и административных страниц."""

from collections import OrderedDict
from datetime import timedelta

import numpy as np
from flask import current_app
from sqlalchemy import func, select

from recruzy.extensions import cache, db
from recruzy.models import (
    ASSIGNMENT_COMPLETED,
    ROLE_USER,
    Question,
    Test,
    TestResult,
    User,
    UserTest,
    isoformat,
    utcnow,
)


def _rounded_mean(values):
    if len(values) == 0:
        return 0
    return int(np.floor(np.mean(values) + 0.5))


def user_results(user_id):
    """All results of a user, newest first, with their tests."""
    return db.session.execute(
        select(TestResult, Test)
        .join(Test, Test.id == TestResult.test_id)
        .where(TestResult.user_id == user_id)
        .order_by(TestResult.completed_at.desc(), TestResult.id.desc())
    ).all()


def active_assignments(user_id):
    return db.session.execute(
        select(UserTest, Test)
        .join(Test, Test.id == UserTest.test_id)
        .where(UserTest.user_id == user_id, UserTest.status != ASSIGNMENT_COMPLETED)
        .order_by(UserTest.due_date.asc(), UserTest.assigned_at.asc())
    ).all()


def result_summary(result, test):
    return {
        "id": result.id,
        "test_id": test.id,
        "test_title": test.title,
        "topic": test.topic,
        "score": result.score,
        "passed": result.passed,
        "time_taken": result.time_taken,
        "completed_at": isoformat(result.completed_at),
    }


@cache.memoize(timeout=120)
def dashboard_data(user_id):
    """Данные главной страницы пользователя. Сбрасывается при записи результата."""
    assignments = active_assignments(user_id)
    results = user_results(user_id)
    scores = [result.score for result, _ in results]

    active_tests = []
    for assignment, test in assignments:
        item = test.to_dict()
        item["assignment_status"] = assignment.status
        item["assigned_at"] = isoformat(assignment.assigned_at)
        item["due_date"] = isoformat(assignment.due_date)
        active_tests.append(item)

    return {
        "activeTests": active_tests,
        "activeTestsCount": len(active_tests),
        "recentResults": [result_summary(r, t) for r, t in results[:2]],
        "testsCompleted": len(results),
        "averageScore": _rounded_mean(scores),
    }


@cache.memoize(timeout=120)
def performance_data(user_id):
    """
    Успеваемость по темам: средний балл, тренд (последний минус первый),
    три сильные темы и три "пробела".
    """
    results = user_results(user_id)
    by_topic = OrderedDict()
    for result, test in results:
        by_topic.setdefault(test.topic or "Unknown", []).append(result.score)

    topic_performance = []
    for topic, scores in by_topic.items():
        # scores упорядочены от новых к старым
        trend = scores[0] - scores[-1] if len(scores) > 1 else 0
        topic_performance.append(
            {
                "topic": topic,
                "score": _rounded_mean(scores),
                "tests": len(scores),
                "trend": trend,
            }
        )

    ranked = sorted(topic_performance, key=lambda t: t["score"], reverse=True)
    strengths = [{"skill": t["topic"], "score": t["score"]} for t in ranked[:3]]
    skill_gaps = sorted(
        ({"skill": t["topic"], "score": 100 - t["score"]} for t in topic_performance),
        key=lambda g: g["score"],
        reverse=True,
    )[:3]

    return {
        "topicPerformance": topic_performance,
        "recentScores": [
            {
                "testId": test.id,
                "testTitle": test.title,
                "score": result.score,
                "date": isoformat(result.completed_at),
            }
            for result, test in results[:5]
        ],
        "averageScore": _rounded_mean([r.score for r, _ in results]),
        "testsCompleted": len(results),
        "strengths": strengths,
        "skillGaps": skill_gaps,
    }


# =============================================================================
# АДМИНИСТРАТИВНАЯ АНАЛИТИКА
# =============================================================================


def per_test_statistics():
    """
    Сводка по каждому тесту: число назначений и попыток, средний и
    медианный балл, доля сдавших, среднее число нарушений.
    """
    passing_score = current_app.config.get("PASSING_SCORE_THRESHOLD", 70)

    question_counts = dict(
        db.session.execute(
            select(Question.test_id, func.count(Question.id)).group_by(Question.test_id)
        ).all()
    )
    assignment_counts = dict(
        db.session.execute(
            select(UserTest.test_id, func.count(UserTest.id)).group_by(UserTest.test_id)
        ).all()
    )

    rows = db.session.execute(
        select(
            TestResult.test_id,
            TestResult.score,
            TestResult.time_taken,
            TestResult.tab_switch_attempts
            + TestResult.no_face_violations
            + TestResult.multiple_faces_violations
            + TestResult.face_changed_violations,
        )
    ).all()
    per_test = {}
    for test_id, result_score, time_taken, violations in rows:
        per_test.setdefault(test_id, []).append((result_score, time_taken, violations))

    stats = []
    for test in db.session.scalars(select(Test).order_by(Test.created_at.desc())):
        samples = np.array(per_test.get(test.id, []), dtype=float).reshape(-1, 3)
        attempts = samples.shape[0]
        scores = samples[:, 0]
        stats.append(
            {
                "test_id": test.id,
                "test_title": test.title,
                "topic": test.topic,
                "status": test.status,
                "question_count": question_counts.get(test.id, 0),
                "assigned_count": assignment_counts.get(test.id, 0),
                "total_attempts": attempts,
                "average_score": round(float(scores.mean()), 1) if attempts else 0.0,
                "median_score": float(np.median(scores)) if attempts else 0.0,
                "pass_rate": (
                    round(float((scores >= passing_score).mean()) * 100, 1)
                    if attempts
                    else 0.0
                ),
                "average_time_taken": (
                    round(float(samples[:, 1].mean()), 1) if attempts else 0.0
                ),
                "average_violations": (
                    round(float(samples[:, 2].mean()), 2) if attempts else 0.0
                ),
            }
        )
    return stats


def invalidate_user_views(*user_ids):
    """Сбрасывает кеш дашборда и успеваемости после изменения данных пользователя."""
    for user_id in user_ids:
        cache.delete_memoized(dashboard_data, user_id)
        cache.delete_memoized(performance_data, user_id)


def per_user_statistics(active_days=30):
    """
    Сводка по тестируемым: назначено, пройдено, средний балл; плюс число
    пользователей, входивших за последние `active_days` дней.
    """
    users = db.session.scalars(
        select(User).where(User.role == ROLE_USER).order_by(User.username.asc())
    ).all()

    assigned = dict(
        db.session.execute(
            select(UserTest.user_id, func.count(UserTest.id)).group_by(UserTest.user_id)
        ).all()
    )
    scores = {}
    for user_id, result_score in db.session.execute(
        select(TestResult.user_id, TestResult.score)
    ):
        scores.setdefault(user_id, []).append(result_score)

    since = utcnow() - timedelta(days=active_days)
    active = db.session.scalar(
        select(func.count(User.id)).where(
            User.role == ROLE_USER, User.last_login >= since
        )
    )

    return {
        "totalUsers": len(users),
        "activeUsers": active or 0,
        "users": [
            {
                "id": user.id,
                "username": user.username,
                "email": user.email,
                "last_login": isoformat(user.last_login),
                "tests_assigned": assigned.get(user.id, 0),
                "tests_completed": len(scores.get(user.id, [])),
                "avg_score": _rounded_mean(scores.get(user.id, [])),
            }
            for user in users
        ],
    }
