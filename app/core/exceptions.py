from typing import Optional


class ApiError(Exception):
    """Base for errors that map straight onto an HTTP status."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(ApiError):
    status_code = 400
    default_message = "Invalid request"


class UnauthorizedError(ApiError):
    status_code = 401
    default_message = "Unauthorized"


class QuotaExceededError(ApiError):
    status_code = 403
    default_message = "Quota exceeded"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(ApiError):
    status_code = 409
    default_message = "Resource already exists"


class WebhookAuthenticationError(ApiError):
    status_code = 400
    default_message = "Invalid webhook signature"


class ServiceUnavailableError(ApiError):
    status_code = 503
    default_message = "Service unavailable"
