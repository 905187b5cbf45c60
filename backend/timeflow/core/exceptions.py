"""
Application exceptions and the global exception handlers for the FastAPI application.
Serializes exceptions into structured logs and JSON error bodies.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from typing import Any, List, Optional


logger = logging.getLogger(__name__)

GENERIC_INTEGRITY_MESSAGE = "The request could not be processed in the timesheet's current state"


class AppException(Exception):
    """Base application exception."""
    expose = True

    def __init__(self, message: str, status_code: int = 500, details: Any = None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class NotFoundError(AppException):
    def __init__(self, message: str = "Not found", details: Any = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


class PermissionDeniedError(AppException):
    def __init__(self, message: str = "Not allowed", details: Any = None):
        super().__init__(message, status.HTTP_403_FORBIDDEN, details)


class WorkflowValidationError(AppException):
    """Malformed input to a workflow operation (bad week start, empty rejection reason)."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, details)


class SubmissionValidationError(AppException):
    """Blocking entry validation errors; the submission never reaches the state machine."""

    def __init__(self, blocking_errors: List[str], field_errors: dict, warnings: List[str]):
        super().__init__(
            "Timesheet has blocking validation errors",
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            {
                "blocking_errors": blocking_errors,
                "field_errors": field_errors,
                "warnings": warnings,
            },
        )
        self.blocking_errors = blocking_errors
        self.field_errors = field_errors
        self.warnings = warnings


class EligibilityError(AppException):
    """Submitter still owes reviews to other users."""

    def __init__(self, message: str, pending_reviews: Optional[list] = None):
        super().__init__(
            message,
            status.HTTP_409_CONFLICT,
            {"pending_reviews": pending_reviews or []},
        )
        self.pending_reviews = pending_reviews or []


class ConflictError(AppException):
    """Stale version on update."""

    def __init__(self, message: str = "Timesheet changed, reload and retry", details: Any = None):
        super().__init__(message, status.HTTP_409_CONFLICT, details)


class EntryLockedError(AppException):
    def __init__(self, message: str, details: Any = None):
        super().__init__(message, status.HTTP_409_CONFLICT, details)


class InvalidTransitionError(AppException):
    """Integrity violation: the requested transition is not legal from the current state."""
    expose = False

    def __init__(self, message: str, details: Any = None):
        super().__init__(message, status.HTTP_409_CONFLICT, details)


class MissingApproverError(InvalidTransitionError):
    """A project in the timesheet has no approver for a required stage."""


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle custom application exceptions."""
    log = logger.warning if exc.expose else logger.error
    log(
        f"Application exception: {exc.message}",
        extra={
            "status_code": exc.status_code,
            "path": request.url.path,
            "details": exc.details,
            "exception_type": type(exc).__name__,
        },
    )

    if not exc.expose:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "message": GENERIC_INTEGRITY_MESSAGE,
                    "path": request.url.path,
                }
            },
        )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.message,
                "details": exc.details,
                "path": request.url.path,
            }
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(
        f"HTTP exception: {exc.detail}",
        extra={
            "status_code": exc.status_code,
            "path": request.url.path,
        },
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
                "status_code": exc.status_code,
                "path": request.url.path,
            }
        },
    )


def _serialize_validation_errors(errors: list) -> list:
    """Convert validation errors to JSON-serializable format."""
    serialized = []
    for error in errors:
        serialized_error = {}
        for key, value in error.items():
            if key == "ctx" and isinstance(value, dict):
                serialized_error[key] = {
                    ctx_key: str(ctx_value) if isinstance(ctx_value, Exception) else ctx_value
                    for ctx_key, ctx_value in value.items()
                }
            elif isinstance(value, Exception):
                serialized_error[key] = str(value)
            else:
                serialized_error[key] = value
        serialized.append(serialized_error)
    return serialized


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors."""
    serialized_errors = _serialize_validation_errors(exc.errors())

    logger.warning(
        f"Validation error: {serialized_errors}",
        extra={
            "path": request.url.path,
            "errors": serialized_errors,
        },
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "message": "Validation error",
                "details": serialized_errors,
                "path": request.url.path,
            }
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(
        f"Unhandled exception: {str(exc)}",
        extra={
            "path": request.url.path,
            "exception_type": type(exc).__name__,
        },
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": "Internal server error",
                "path": request.url.path,
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
