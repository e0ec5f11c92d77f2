# recruzy/models.py
from datetime import UTC, datetime

from flask import current_app
from flask_login import UserMixin
from sqlalchemy import CheckConstraint, Index, UniqueConstraint
from werkzeug.security import check_password_hash, generate_password_hash

from recruzy.extensions import db

ROLE_ADMIN = "admin"
ROLE_USER = "user"
USER_ROLES = (ROLE_ADMIN, ROLE_USER)

TEST_STATUS_DRAFT = "draft"
TEST_STATUS_ACTIVE = "active"
TEST_STATUS_PUBLISHED = "published"
TEST_STATUS_COMPLETED = "completed"
TEST_STATUSES = (
    TEST_STATUS_DRAFT,
    TEST_STATUS_ACTIVE,
    TEST_STATUS_PUBLISHED,
    TEST_STATUS_COMPLETED,
)

ASSIGNMENT_ASSIGNED = "assigned"
ASSIGNMENT_STARTED = "started"
ASSIGNMENT_COMPLETED = "completed"
ASSIGNMENT_STATUSES = (ASSIGNMENT_ASSIGNED, ASSIGNMENT_STARTED, ASSIGNMENT_COMPLETED)

DIFFICULTIES = ("easy", "intermediate", "hard")


def utcnow():
    return datetime.now(UTC)


def isoformat(value):
    return value.isoformat() if value else None


class User(db.Model, UserMixin):
    """Учетная запись: администратор или тестируемый."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, index=True, nullable=False)
    email = db.Column(db.String(120), unique=True, index=True, nullable=False)
    password_hash = db.Column(db.String(256))
    role = db.Column(db.String(16), nullable=False, default=ROLE_USER, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    last_login = db.Column(db.DateTime(timezone=True))

    # Relationships
    results = db.relationship("TestResult", backref="user", lazy="dynamic")
    assignments = db.relationship("UserTest", backref="user", lazy="dynamic")

    __table_args__ = (
        CheckConstraint(f"role IN {USER_ROLES}", name="ck_users_role"),
    )

    def set_password(self, password):
        """Хэширует и устанавливает пароль пользователя."""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Проверяет, соответствует ли предоставленный пароль хэшу."""
        return check_password_hash(self.password_hash or "", password)

    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "created_at": isoformat(self.created_at),
            "last_login": isoformat(self.last_login),
        }

    def __repr__(self):
        return f"<User {self.id}: {self.username}>"


class Test(db.Model):
    """A multiple-choice test authored by an administrator."""

    __tablename__ = "tests"
    # pytest не должен собирать эту модель как тестовый класс
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    topic = db.Column(db.String(100), nullable=False, index=True)
    description = db.Column(db.Text)
    duration = db.Column(db.Integer, nullable=False, default=60)  # minutes
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    status = db.Column(
        db.String(16), nullable=False, default=TEST_STATUS_DRAFT, index=True
    )
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    questions = db.relationship(
        "Question",
        backref="test",
        order_by="Question.position",
        cascade="all, delete-orphan",
    )
    assignments = db.relationship("UserTest", backref="test", lazy="dynamic")
    results = db.relationship("TestResult", backref="test", lazy="dynamic")

    __table_args__ = (
        CheckConstraint(f"status IN {TEST_STATUSES}", name="ck_tests_status"),
    )

    @property
    def is_published(self):
        return self.status == TEST_STATUS_PUBLISHED

    def to_dict(self, with_questions=False, include_answers=False):
        data = {
            "id": self.id,
            "title": self.title,
            "topic": self.topic,
            "description": self.description,
            "duration": self.duration,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if with_questions:
            data["questions"] = [
                q.to_dict(include_answer=include_answers) for q in self.questions
            ]
        return data


class Question(db.Model):
    __tablename__ = "questions"

    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(
        db.Integer, db.ForeignKey("tests.id"), nullable=False, index=True
    )
    text = db.Column(db.Text, nullable=False)
    options = db.Column(db.JSON, nullable=False)
    correct_answer = db.Column(db.Integer, nullable=False)
    difficulty = db.Column(db.String(16), nullable=False, default="intermediate")
    explanation = db.Column(db.Text)
    position = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("correct_answer >= 0", name="ck_questions_correct_answer"),
    )

    def to_dict(self, include_answer=False):
        data = {
            "id": self.id,
            "test_id": self.test_id,
            "text": self.text,
            "options": list(self.options or []),
            "difficulty": self.difficulty,
            "position": self.position,
        }
        # Правильный ответ и пояснение уходят только администратору
        if include_answer:
            data["correct_answer"] = self.correct_answer
            data["explanation"] = self.explanation
        return data


class UserTest(db.Model):
    """Assignment of a test to a user."""

    __tablename__ = "user_tests"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    test_id = db.Column(db.Integer, db.ForeignKey("tests.id"), nullable=False)
    assigned_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=ASSIGNMENT_ASSIGNED)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # Гарантия "не более одного назначения на пару" на уровне БД
        UniqueConstraint("user_id", "test_id", name="uq_user_tests_user_test"),
        Index("idx_user_tests_status", "user_id", "status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "test_id": self.test_id,
            "assigned_at": isoformat(self.assigned_at),
            "due_date": isoformat(self.due_date),
            "status": self.status,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
        }


class TestResult(db.Model):
    """Scored outcome of one completed attempt. Rows are never updated."""

    __tablename__ = "test_results"
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    test_id = db.Column(db.Integer, db.ForeignKey("tests.id"), nullable=False)
    submission_id = db.Column(db.String(128), nullable=True)
    score = db.Column(db.Integer, nullable=False)
    correct_count = db.Column(db.Integer, nullable=False, default=0)
    total_questions = db.Column(db.Integer, nullable=False, default=0)
    answers = db.Column(db.JSON, nullable=False, default=dict)
    time_taken = db.Column(db.Integer, nullable=False, default=0)  # seconds
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    # Proctoring counters
    tab_switch_attempts = db.Column(db.Integer, nullable=False, default=0)
    no_face_violations = db.Column(db.Integer, nullable=False, default=0)
    multiple_faces_violations = db.Column(db.Integer, nullable=False, default=0)
    face_changed_violations = db.Column(db.Integer, nullable=False, default=0)
    client_errors = db.Column(db.JSON, nullable=True)

    __table_args__ = (
        CheckConstraint("score >= 0 AND score <= 100", name="ck_results_score"),
        UniqueConstraint(
            "user_id", "submission_id", name="uq_test_results_submission"
        ),
        Index("idx_result_user_completed", "user_id", "completed_at"),
        Index("idx_result_test_score", "test_id", "score"),
    )

    @property
    def total_violations(self):
        return (
            (self.tab_switch_attempts or 0)
            + (self.no_face_violations or 0)
            + (self.multiple_faces_violations or 0)
            + (self.face_changed_violations or 0)
        )

    @property
    def passed(self):
        passing_score = current_app.config.get("PASSING_SCORE_THRESHOLD", 70)
        return self.score >= passing_score if self.score is not None else False

    def violations_dict(self):
        return {
            "tabSwitches": self.tab_switch_attempts,
            "noFace": self.no_face_violations,
            "multipleFaces": self.multiple_faces_violations,
            "faceChanged": self.face_changed_violations,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "test_id": self.test_id,
            "submission_id": self.submission_id,
            "score": self.score,
            "correct_count": self.correct_count,
            "total_questions": self.total_questions,
            "passed": self.passed,
            "answers": self.answers,
            "time_taken": self.time_taken,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "violations": self.violations_dict(),
            "client_errors": self.client_errors,
        }
