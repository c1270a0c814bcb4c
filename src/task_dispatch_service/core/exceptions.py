"""Service error taxonomy and exception handlers for consistent error responses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from task_dispatch_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler


class ServiceError(Exception):
    """Error carrying a machine-readable code, HTTP status and details."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details = details if details is not None else {}


class InvalidRequestError(ServiceError):
    """Malformed input or a violated business precondition."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__("VALIDATION_ERROR", message, 400, details)


class AuthError(ServiceError):
    """Missing or unknown credentials."""

    def __init__(self, message: str = "Invalid or missing credentials") -> None:
        super().__init__("AUTH_ERROR", message, 401)


class InsufficientBalanceError(ServiceError):
    """Available balance is lower than the requested debit."""

    def __init__(self, required_cents: int) -> None:
        super().__init__(
            "INSUFFICIENT_BALANCE",
            "Insufficient balance",
            402,
            {"required_cents": required_cents},
        )


class SuspendedError(ServiceError):
    """Worker is suspended until the given timestamp."""

    def __init__(self, suspended_until: str) -> None:
        super().__init__(
            "WORKER_SUSPENDED",
            f"Worker suspended until {suspended_until}",
            403,
            {"suspended_until": suspended_until},
        )
        self.suspended_until = suspended_until


class NotFoundError(ServiceError):
    """Entity does not exist or is not visible to the caller."""

    def __init__(self, entity: str) -> None:
        super().__init__("NOT_FOUND", f"{entity} not found", 404)


class ConflictError(ServiceError):
    """Entity exists but is in a state that forbids the operation."""

    def __init__(self, message: str, current_status: str | None = None) -> None:
        details = {} if current_status is None else {"current_status": current_status}
        super().__init__("CONFLICT", message, 409, details)
        self.current_status = current_status


class RateLimitedError(ServiceError):
    """Sliding-window limit exceeded."""

    def __init__(self, operation: str, retry_after_seconds: int) -> None:
        super().__init__(
            "RATE_LIMITED",
            f"Rate limit exceeded for {operation}. Retry after {retry_after_seconds}s",
            429,
            {"retry_after_seconds": retry_after_seconds},
        )
        self.retry_after_seconds = retry_after_seconds


def error_response(
    status_code: int,
    error: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """The ``{error, message, details}`` body every failure uses."""
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": details or {}},
        headers=headers,
    )


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    get_logger(__name__).warning(
        "Service error",
        extra={
            "error_code": exc.error,
            "status_code": exc.status_code,
            "path": request.url.path,
        },
    )
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return error_response(exc.status_code, exc.error, exc.message, exc.details, headers)


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    get_logger(__name__).exception("Unhandled exception", extra={"path": request.url.path})
    return error_response(500, "internal_error", "An unexpected error occurred")


async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors such as 404 for unknown paths and 405 for wrong methods."""
    if exc.status_code == 405:
        return error_response(405, "METHOD_NOT_ALLOWED", "Method not allowed")
    return error_response(exc.status_code, "HTTP_ERROR", str(exc.detail))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(
        StarletteHTTPException, cast("ExceptionHandler", http_exception_handler)
    )
    app.add_exception_handler(Exception, unhandled_exception_handler)
