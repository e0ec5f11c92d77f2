import os

from flask import Flask, jsonify
from flask_migrate import Migrate
from flask_wtf.csrf import generate_csrf
from prometheus_flask_exporter import PrometheusMetrics
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from config import config_by_name
from recruzy.errors import PersistenceError, ServiceError
from recruzy.extensions import cache, cors, csrf, db, limiter, login_manager, socketio

from .utils.logging import setup_structured_logging


def create_app(config_name=None):
    """Application factory pattern implementation."""
    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)

    app.config.from_object(config_by_name[config_name])

    setup_structured_logging(app)
    init_extensions(app)
    init_login_manager(app)

    if app.config.get("PROMETHEUS_METRICS_ENABLED"):
        PrometheusMetrics(app)

    register_blueprints(app)
    register_error_handlers(app)

    from recruzy import commands

    commands.register_commands(app)

    @app.after_request
    def inject_csrf_token(response):
        """
        Отправляет cookie с CSRF-токеном после каждого запроса.
        Это позволяет JavaScript-клиентам его считывать.
        """
        if app.config.get("WTF_CSRF_ENABLED", True):
            response.set_cookie(
                "csrf_token",
                generate_csrf(),
                secure=app.config.get("SESSION_COOKIE_SECURE", True),
                samesite=app.config.get("SESSION_COOKIE_SAMESITE", "Strict"),
                httponly=False,
            )
        return response

    if app.config.get("USE_PROXY_FIX"):
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=app.config.get("PROXY_FIX_X_FOR", 1),
            x_proto=app.config.get("PROXY_FIX_X_PROTO", 1),
            x_host=app.config.get("PROXY_FIX_X_HOST", 1),
            x_port=app.config.get("PROXY_FIX_X_PORT", 1),
        )

    app.logger.debug(
        "Registered routes",
        extra={"routes": sorted(str(rule) for rule in app.url_map.iter_rules())},
    )
    return app


def init_extensions(app):
    """Initialize Flask extensions."""
    db.init_app(app)

    Migrate(app, db, directory="migrations")

    csrf.init_app(app)

    cors.init_app(
        app, origins=app.config.get("CORS_ORIGINS", []), supports_credentials=True
    )

    cache.init_app(app)

    limiter.init_app(app)

    socketio.init_app(
        app,
        cors_allowed_origins=app.config.get("CORS_ORIGINS", []),
        message_queue=app.config.get("SOCKETIO_MESSAGE_QUEUE"),
        async_mode=app.config.get("SOCKETIO_ASYNC_MODE"),
        manage_session=False,
    )


def init_login_manager(app):
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        from recruzy.models import User

        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"status": "error", "error": "Authentication required"}), 401


def register_blueprints(app):
    """Register application blueprints."""
    from recruzy.api import api_bp
    from recruzy.web import web_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    app.register_blueprint(web_bp)


def register_error_handlers(app):
    """Register global error handlers."""

    @app.errorhandler(ServiceError)
    def service_error(error):
        if isinstance(error, PersistenceError):
            db.session.rollback()
            app.logger.error(f"Persistence error: {error.message}", exc_info=error)
        else:
            app.logger.info(
                f"Request rejected ({error.status_code}): {error.message}"
            )
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"status": "error", "error": "Request entity too large"}), 413

    @app.errorhandler(429)
    def ratelimit_handler(error):
        return (
            jsonify(
                {
                    "status": "error",
                    "error": "Rate limit exceeded",
                    "retry_after": error.description,
                }
            ),
            429,
        )

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"status": "error", "error": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"status": "error", "error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        app.logger.error(f"Internal server error: {error}", exc_info=True)
        return jsonify({"status": "error", "error": "Internal server error"}), 500

    @app.errorhandler(Exception)
    def unhandled_exception(error):
        if isinstance(error, HTTPException):
            return jsonify({"status": "error", "error": error.description}), error.code
        db.session.rollback()
        app.logger.error(f"Unhandled exception: {error}", exc_info=error)
        return jsonify({"status": "error", "error": "Internal server error"}), 500
