import functools
import logging
from typing import Any, Optional

logger = logging.getLogger("errors")


class AppError(Exception):
    """Base class for every error the service surfaces to callers."""

    status_code: int = 500
    code: str = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body: dict = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource", resource_id: Optional[str] = None):
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message)
        self.resource = resource
        self.resource_id = resource_id


class ExternalServiceError(AppError):
    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(
        self,
        service: str,
        message: str = "External service error",
        status: Optional[int] = None,
        timed_out: bool = False,
        details: Optional[Any] = None,
    ):
        super().__init__(f"{service}: {message}", details)
        self.service = service
        self.status = status
        self.timed_out = timed_out
        if timed_out:
            self.status_code = 504


def service_boundary(func):
    """Let AppError through untouched and turn anything else into ExternalServiceError."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except AppError:
            raise
        except Exception as exc:
            logger.error(f"Unexpected error in {func.__qualname__}: {exc}", exc_info=True)
            raise ExternalServiceError("internal", f"Unexpected error: {exc}") from exc

    return wrapper
