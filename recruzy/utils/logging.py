# recruzy/utils/logging.py
import logging
import time
import uuid

from flask import g, has_request_context, request
from flask_login import current_user
from pythonjsonlogger.json import JsonFormatter


class RequestIdJsonFormatter(JsonFormatter):
    """Adds request_id and the authenticated user id to every log record."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not has_request_context():
            return
        if hasattr(g, "request_id"):
            log_record["request_id"] = g.request_id
        # current_user загружается лениво; не трогаем его до before_request
        user_id = getattr(g, "log_user_id", None)
        if user_id is not None:
            log_record["user_id"] = user_id


def setup_structured_logging(app):
    """Setup structured logging with Request ID and timings."""

    log_handler = logging.StreamHandler()
    formatter = RequestIdJsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    log_handler.setFormatter(formatter)

    app.logger.handlers.clear()
    app.logger.addHandler(log_handler)
    level = app.config.get("LOG_LEVEL") or ("DEBUG" if app.debug else "INFO")
    app.logger.setLevel(level)

    @app.before_request
    def before_request_logging():
        """Logs the start of the request and generates a request_id."""
        g.request_id = str(uuid.uuid4())
        g.start_time = time.monotonic()
        if current_user and current_user.is_authenticated:
            g.log_user_id = current_user.id

        app.logger.info(
            "Request started",
            extra={
                "request_info": {
                    "method": request.method,
                    "path": request.path,
                    "ip": request.remote_addr,
                    "user_agent": request.headers.get("User-Agent"),
                }
            },
        )

    @app.after_request
    def after_request_logging(response):
        """Logs the end of the request, status, and duration."""
        start_time = getattr(g, "start_time", None)
        duration_ms = -1
        if start_time is not None:
            duration_ms = round((time.monotonic() - start_time) * 1000, 2)

        app.logger.info(
            "Request finished",
            extra={
                "response_info": {
                    "status_code": response.status_code,
                    "mimetype": response.mimetype,
                    "content_length": response.content_length,
                    "duration_ms": duration_ms,
                }
            },
        )
        if hasattr(g, "request_id"):
            response.headers["X-Request-ID"] = g.request_id
        return response

    @app.teardown_request
    def teardown_request_logging(exception=None):
        """Logs if an exception occurred during the request."""
        if exception:
            app.logger.error("Unhandled exception during request", exc_info=exception)
