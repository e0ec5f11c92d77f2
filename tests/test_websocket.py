import pytest
from flask import g
from sqlalchemy import select

from recruzy.api import websocket
from recruzy.extensions import socketio
from recruzy.models import TestResult, UserTest
from tests.fixtures.sample_data import UserTestFactory, answer_sheet, make_test


def _connect(app, http_client):
    g.pop("_login_user", None)
    return socketio.test_client(app, flask_test_client=http_client)


def _events(ws, name):
    return [msg["args"][0] for msg in ws.get_received() if msg["name"] == name]


@pytest.fixture
def assigned_test(regular_user, db_session):
    test = make_test(correct_answers=(0, 1, 2, 3))
    UserTestFactory(user=regular_user, test=test)
    return test


@pytest.fixture
def taker_ws(app, user_client):
    ws = _connect(app, user_client)
    yield ws
    if ws.is_connected():
        ws.disconnect()


def test_anonymous_connection_is_refused(app, client):
    ws = _connect(app, client)
    assert not ws.is_connected()


def test_connect_reports_identity(taker_ws, regular_user):
    assert taker_ws.is_connected()
    connected = _events(taker_ws, "connected")
    assert connected == [{"userId": regular_user.id, "role": "user"}]


def test_violation_before_monitoring(taker_ws):
    taker_ws.get_received()
    taker_ws.emit("violation", {"kind": "tab_switch"})
    errors = _events(taker_ws, "monitoring_error")
    assert errors and "not been started" in errors[0]["error"]


def test_unknown_violation_kind(taker_ws, assigned_test):
    taker_ws.emit("start_monitoring", {"testId": assigned_test.id})
    taker_ws.get_received()

    taker_ws.emit("violation", {"kind": "screenshot"})

    assert _events(taker_ws, "monitoring_error")


def test_second_tab_switch_auto_submits(taker_ws, assigned_test, regular_user, db_session):
    taker_ws.emit(
        "start_monitoring",
        {"testId": assigned_test.id, "startedAt": "2025-01-10T09:00:00Z"},
    )
    started = _events(taker_ws, "monitoring_started")
    assert started[0]["allowances"]["tab_switch"] == 1

    taker_ws.emit("answers_snapshot", {"answers": answer_sheet(assigned_test, [0, 1])})

    taker_ws.emit("violation", {"kind": "tab_switch"})
    warnings = _events(taker_ws, "proctoring_warning")
    assert warnings == [{"kind": "tab_switch", "count": 1, "warningsLeft": 0}]
    assert db_session.scalars(select(TestResult)).first() is None

    taker_ws.emit("violation", {"kind": "tab_switch"})
    submitted = _events(taker_ws, "test_auto_submitted")
    assert len(submitted) == 1
    assert submitted[0]["reason"] == "tab_switch"
    assert submitted[0]["score"] == 50

    # Монитор уже в состоянии violated: новые события игнорируются
    taker_ws.emit("violation", {"kind": "tab_switch"})
    taker_ws.emit("violation", {"kind": "no_face"})
    assert taker_ws.get_received() == []

    results = db_session.scalars(select(TestResult)).all()
    assert len(results) == 1
    assert results[0].user_id == regular_user.id
    assert results[0].tab_switch_attempts == 2
    assert results[0].correct_count == 2

    assignment = db_session.scalars(select(UserTest)).one()
    assert assignment.status == "completed"


def test_face_violations_warn_twice(taker_ws, assigned_test, db_session):
    taker_ws.emit("start_monitoring", {"testId": assigned_test.id})
    taker_ws.get_received()

    for expected_left in (1, 0):
        taker_ws.emit("violation", {"kind": "multiple_faces"})
        warning = _events(taker_ws, "proctoring_warning")[0]
        assert warning["warningsLeft"] == expected_left

    taker_ws.emit("violation", {"kind": "multiple_faces"})
    assert len(_events(taker_ws, "test_auto_submitted")) == 1

    result = db_session.scalars(select(TestResult)).one()
    assert result.multiple_faces_violations == 3
    assert result.score == 0


def test_face_restored_breaks_the_streak(taker_ws, assigned_test, db_session):
    taker_ws.emit("start_monitoring", {"testId": assigned_test.id})
    for _ in range(2):
        taker_ws.emit("violation", {"kind": "no_face"})
    taker_ws.get_received()

    taker_ws.emit("face_restored", {"kind": "no_face"})
    assert _events(taker_ws, "proctoring_reset") == [{"kind": "no_face", "warningsLeft": 2}]

    taker_ws.emit("violation", {"kind": "no_face"})
    warning = _events(taker_ws, "proctoring_warning")[0]
    assert warning == {"kind": "no_face", "count": 3, "warningsLeft": 1}
    assert db_session.scalars(select(TestResult)).first() is None


def test_tab_switch_cannot_be_restored(taker_ws, assigned_test):
    taker_ws.emit("start_monitoring", {"testId": assigned_test.id})
    taker_ws.get_received()

    taker_ws.emit("face_restored", {"kind": "tab_switch"})

    assert _events(taker_ws, "monitoring_error")


def test_restart_after_auto_submit_is_refused(app, taker_ws, assigned_test, db_session):
    taker_ws.emit("start_monitoring", {"testId": assigned_test.id})
    taker_ws.emit("violation", {"kind": "tab_switch"})
    taker_ws.emit("violation", {"kind": "tab_switch"})
    taker_ws.get_received()

    app.config["ALLOW_RETAKES"] = True
    try:
        taker_ws.emit("start_monitoring", {"testId": assigned_test.id})
        errors = _events(taker_ws, "monitoring_error")
    finally:
        app.config["ALLOW_RETAKES"] = False

    assert errors and "already been submitted" in errors[0]["error"]
    taker_ws.emit("violation", {"kind": "tab_switch"})
    taker_ws.emit("violation", {"kind": "tab_switch"})
    assert len(db_session.scalars(select(TestResult)).all()) == 1


def test_unassigned_test_cannot_be_monitored(taker_ws, db_session):
    foreign = make_test()
    taker_ws.get_received()

    taker_ws.emit("start_monitoring", {"testId": foreign.id})

    errors = _events(taker_ws, "monitoring_error")
    assert errors and "not assigned" in errors[0]["error"]
    assert not _events(taker_ws, "monitoring_started")


def test_completed_test_cannot_be_monitored_again(app, user_client, assigned_test, db_session):
    first = _connect(app, user_client)
    first.emit("start_monitoring", {"testId": assigned_test.id})
    first.emit("violation", {"kind": "tab_switch"})
    first.emit("violation", {"kind": "tab_switch"})
    first.disconnect()

    second = _connect(app, user_client)
    second.get_received()
    second.emit("start_monitoring", {"testId": assigned_test.id})

    errors = _events(second, "monitoring_error")
    assert errors and "already completed" in errors[0]["error"]
    second.disconnect()


def test_reconnect_starts_with_clean_monitor(app, user_client, assigned_test, db_session):
    first = _connect(app, user_client)
    first.emit("start_monitoring", {"testId": assigned_test.id})
    first.emit("violation", {"kind": "tab_switch"})
    first.disconnect()

    second = _connect(app, user_client)
    second.emit("start_monitoring", {"testId": assigned_test.id})
    second.get_received()
    second.emit("violation", {"kind": "tab_switch"})

    assert _events(second, "proctoring_warning")[0]["count"] == 1
    assert db_session.scalars(select(TestResult)).first() is None
    active = len(websocket._sessions)
    second.disconnect()
    assert len(websocket._sessions) == active - 1


def test_admin_cannot_start_monitoring(app, admin_client, db_session):
    ws = _connect(app, admin_client)
    ws.get_received()
    ws.emit("start_monitoring", {"testId": 1})
    assert _events(ws, "monitoring_error")
    ws.disconnect()
