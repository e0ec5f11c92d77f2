# recruzy/api/websocket.py
"""
Socket.IO: комнаты для уведомлений и прокторинг активной попытки.

Монитор живет ровно столько, сколько соединение: перезагрузка страницы
открывает новое соединение и начинает с чистыми счетчиками.
"""

from datetime import UTC, datetime

from flask import current_app, request
from flask_socketio import ConnectionRefusedError, emit, join_room

from recruzy.auth.actor import current_actor
from recruzy.errors import ServiceError
from recruzy.extensions import socketio
from recruzy.metrics import ACTIVE_WEBSOCKET_CONNECTIONS, AUTO_SUBMISSIONS_TOTAL
from recruzy.models import utcnow
from recruzy.services.proctoring import (
    ACTION_AUTO_SUBMIT,
    ACTION_IGNORED,
    ACTION_RESET,
    RECOVERABLE_KINDS,
    VIOLATION_KINDS,
    ProctoringMonitor,
    default_allowances,
)
from recruzy.services.results import check_attempt, record_result

# sid -> состояние активной попытки
_sessions = {}


class ProctoringSession:
    """Монитор и последний снимок ответов одной попытки."""

    def __init__(self, actor, test_id, started_at=None, allowances=None):
        self.actor = actor
        self.test_id = test_id
        self.started_at = started_at
        self.answers = {}
        self.result = None
        self.monitor = ProctoringMonitor(self._auto_submit, allowances=allowances)

    def _auto_submit(self, counters, kind):
        elapsed = 0
        if self.started_at is not None:
            elapsed = max(int((utcnow() - self.started_at).total_seconds()), 0)

        self.result, _ = record_result(
            self.actor,
            user_id=self.actor.user_id,
            test_id=self.test_id,
            answers=dict(self.answers),
            elapsed_seconds=elapsed,
            started_at=self.started_at,
            violations=counters,
        )
        AUTO_SUBMISSIONS_TOTAL.labels(violation=kind).inc()
        current_app.logger.warning(
            f"Test {self.test_id} auto-submitted for user {self.actor.user_id} "
            f"after '{kind}' violations: {counters}"
        )


def _parse_started_at(value):
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


@socketio.on("connect")
def handle_connect(auth=None):
    """Только аутентифицированные сессии; комнаты по пользователю и роли."""
    actor = current_actor()
    if actor is None:
        raise ConnectionRefusedError("Authentication required")

    join_room(f"user:{actor.user_id}")
    if actor.is_admin:
        join_room("admins")

    ACTIVE_WEBSOCKET_CONNECTIONS.inc()
    emit("connected", {"userId": actor.user_id, "role": actor.role})


@socketio.on("disconnect")
def handle_disconnect(*args):
    session = _sessions.pop(request.sid, None)
    if session is not None and session.result is None:
        current_app.logger.info(
            f"User {session.actor.user_id} disconnected during test {session.test_id}"
        )
    ACTIVE_WEBSOCKET_CONNECTIONS.dec()


@socketio.on("start_monitoring")
def handle_start_monitoring(data):
    actor = current_actor()
    if actor is None or not actor.is_user:
        emit("monitoring_error", {"error": "Only test takers can be monitored"})
        return

    data = data or {}
    try:
        test_id = int(data.get("testId"))
    except (TypeError, ValueError):
        emit("monitoring_error", {"error": "testId is required"})
        return

    previous = _sessions.get(request.sid)
    if previous is not None and previous.result is not None:
        # Попытка уже отправлена монитором; новый монитор открыл бы вторую
        emit("monitoring_error", {"error": "Test has already been submitted"})
        return

    try:
        check_attempt(actor, test_id)
    except ServiceError as e:
        current_app.logger.warning(
            f"Proctoring refused: user={actor.user_id}, test={test_id}: {e.message}"
        )
        emit("monitoring_error", {"error": e.message})
        return

    allowances = default_allowances(
        current_app.config.get("PROCTORING_TAB_SWITCH_WARNINGS", 1),
        current_app.config.get("PROCTORING_FACE_WARNINGS", 2),
    )
    _sessions[request.sid] = ProctoringSession(
        actor,
        test_id,
        started_at=_parse_started_at(data.get("startedAt")),
        allowances=allowances,
    )
    current_app.logger.info(f"Proctoring started: user={actor.user_id}, test={test_id}")
    emit("monitoring_started", {"testId": test_id, "allowances": allowances})


@socketio.on("answers_snapshot")
def handle_answers_snapshot(data):
    session = _sessions.get(request.sid)
    if session is None:
        return
    answers = (data or {}).get("answers")
    if isinstance(answers, dict):
        session.answers = answers


@socketio.on("violation")
def handle_violation(data):
    session = _sessions.get(request.sid)
    if session is None:
        emit("monitoring_error", {"error": "Monitoring has not been started"})
        return

    kind = (data or {}).get("kind")
    if kind not in VIOLATION_KINDS:
        emit("monitoring_error", {"error": f"Unknown violation kind: {kind}"})
        return

    try:
        action = session.monitor.record_violation(kind)
    except ServiceError as e:
        current_app.logger.error(
            f"Auto-submit failed for user {session.actor.user_id}, "
            f"test {session.test_id}: {e.message}"
        )
        emit("monitoring_error", {"error": e.message})
        return

    if action == ACTION_IGNORED:
        return

    if action == ACTION_AUTO_SUBMIT:
        result = session.result
        emit(
            "test_auto_submitted",
            {
                "testId": session.test_id,
                "reason": kind,
                "violations": session.monitor.counters(),
                "resultId": result.id,
                "score": result.score,
            },
        )
        return

    emit(
        "proctoring_warning",
        {
            "kind": kind,
            "count": session.monitor.counts[kind],
            "warningsLeft": session.monitor.warnings_left(kind),
        },
    )


@socketio.on("face_restored")
def handle_face_restored(data):
    """Лицо снова в кадре: серия нарушений этого вида обнуляется."""
    session = _sessions.get(request.sid)
    if session is None:
        emit("monitoring_error", {"error": "Monitoring has not been started"})
        return

    kind = (data or {}).get("kind")
    if kind not in RECOVERABLE_KINDS:
        emit("monitoring_error", {"error": f"Violation kind cannot be recovered: {kind}"})
        return

    if session.monitor.record_recovery(kind) == ACTION_RESET:
        emit(
            "proctoring_reset",
            {"kind": kind, "warningsLeft": session.monitor.warnings_left(kind)},
        )
