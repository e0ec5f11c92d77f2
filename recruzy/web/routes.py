# recruzy/web/routes.py

from flask import current_app, jsonify
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy import func, or_, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from recruzy.errors import (
    AuthenticationError,
    PersistenceError,
    ServiceError,
    ValidationError,
)
from recruzy.extensions import db, limiter
from recruzy.models import ROLE_USER, User, utcnow
from recruzy.services.assignments import assign_missing_tests
from recruzy.web.forms import LoginForm, RegistrationForm

from . import web_bp


def _form_errors(form):
    return {field: list(messages) for field, messages in form.errors.items()}


# =============================================================================
# РЕГИСТРАЦИЯ И АУТЕНТИФИКАЦИЯ
# =============================================================================


@web_bp.route("/register", methods=["POST"])
@limiter.limit("10 per hour")
def register():
    """
    Создает учетную запись тестируемого и сразу назначает ей все
    опубликованные тесты. Сбой назначения не отменяет регистрацию.
    """
    form = RegistrationForm()
    if not form.validate_on_submit():
        raise ValidationError("Invalid registration data", details=_form_errors(form))

    username = form.username.data.strip()
    email = form.email.data.strip().lower()

    taken = db.session.scalars(
        select(User).where(
            or_(User.username == username, func.lower(User.email) == email)
        )
    ).first()
    if taken is not None:
        raise ValidationError("Username or email is already registered")

    user = User(username=username, email=email, role=ROLE_USER)
    user.set_password(form.password.data)
    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise ValidationError("Username or email is already registered") from e
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError("Failed to create account") from e

    current_app.logger.info(f"New user registered: {user.id} ({user.username})")

    assigned = set()
    try:
        assigned = assign_missing_tests(user.id, trigger="registration")
    except ServiceError as e:
        # Назначения можно восстановить позже через reconcile
        current_app.logger.error(
            f"Failed to assign tests to new user {user.id}: {e.message}"
        )

    login_user(user)
    return (
        jsonify(
            {
                "status": "success",
                "user": user.to_dict(),
                "assignedTests": len(assigned),
            }
        ),
        201,
    )


@web_bp.route("/login", methods=["POST"])
@limiter.limit("20 per minute")
def login():
    """Вход по email или имени пользователя."""
    form = LoginForm()
    if not form.validate_on_submit():
        raise ValidationError("Invalid login data", details=_form_errors(form))

    identifier = form.login.data.strip()
    user = db.session.scalars(
        select(User).where(
            or_(
                User.username == identifier,
                func.lower(User.email) == identifier.lower(),
            )
        )
    ).first()

    if user is None or not user.check_password(form.password.data):
        current_app.logger.warning(f"Failed login attempt for '{identifier}'")
        raise AuthenticationError("Invalid credentials")

    user.last_login = utcnow()
    db.session.commit()

    login_user(user, remember=form.remember_me.data)
    current_app.logger.info(f"User {user.id} ({user.role}) logged in")
    return jsonify({"status": "success", "user": user.to_dict()}), 200


@web_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    user_id = current_user.id
    logout_user()
    current_app.logger.info(f"User {user_id} logged out")
    return jsonify({"status": "success"}), 200


# =============================================================================
# СЛУЖЕБНЫЕ МАРШРУТЫ
# =============================================================================


@web_bp.route("/health")
@limiter.exempt
def health_check():
    """
    Проверка работоспособности приложения. Используется Docker HEALTHCHECK.
    """
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        current_app.logger.error(f"Health check database error: {e}")
        database = "unavailable"

    status = "healthy" if database == "ok" else "degraded"
    return (
        jsonify(
            {
                "status": status,
                "database": database,
                "timestamp": utcnow().isoformat(),
            }
        ),
        200 if status == "healthy" else 503,
    )
