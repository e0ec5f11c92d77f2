# recruzy/auth/decorators.py

from functools import wraps

from flask import current_app, jsonify, request

from recruzy.auth.actor import current_actor


def roles_required(*roles):
    """
    Требует аутентифицированную сессию и (опционально) одну из ролей.
    Передает в обработчик явный контекст `actor`.
    """

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor = current_actor()
            if actor is None:
                return (
                    jsonify({"status": "error", "error": "Authentication required"}),
                    401,
                )

            if roles and actor.role not in roles:
                current_app.logger.warning(
                    f"User {actor.user_id} with role '{actor.role}' attempted to "
                    f"access restricted endpoint '{request.endpoint}'"
                )
                return (
                    jsonify({"status": "error", "error": "Insufficient privileges"}),
                    403,
                )

            kwargs["actor"] = actor
            return f(*args, **kwargs)

        return decorated_function

    return decorator


def login_required(f):
    """Любой вошедший пользователь."""
    return roles_required()(f)


def user_required(f):
    """Только тестируемые (роль 'user')."""
    return roles_required("user")(f)


def admin_required(f):
    """Только администраторы."""
    return roles_required("admin")(f)
