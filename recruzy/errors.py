# recruzy/errors.py
"""Domain errors. Each carries the HTTP status it is reported with."""


class ServiceError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None, details=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self):
        payload = {"status": "error", "error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(ServiceError):
    status_code = 400
    default_message = "Invalid input data"


class AuthenticationError(ServiceError):
    status_code = 401
    default_message = "Authentication required"


class AuthorizationError(ServiceError):
    status_code = 403
    default_message = "Access denied"


class NotFoundError(ServiceError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(ServiceError):
    status_code = 409
    default_message = "Resource already exists"


class PersistenceError(ServiceError):
    status_code = 500
    default_message = "Failed to access the data store"


class EmptyAnswerKey(ValidationError):
    default_message = "Test has no questions to score"


class MalformedRecordError(PersistenceError):
    default_message = "Malformed record in the data store"
