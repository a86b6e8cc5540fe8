"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.

Error taxonomy for trip admission:
- BlockingValidationError: error-severity findings, never retried
- AssignmentConflictError: exclusivity lost between validation and commit,
  handled like a fresh blocking validation
- TransientIOError: store unreachable or timed out, safe to retry
"""

import logging
from typing import Any, Dict, List

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class BlockingValidationError(AppException):
    """Raised when a candidate trip carries error-severity findings."""

    def __init__(
        self,
        findings: List[Dict[str, Any]],
        message: str = "Trip admission blocked by validation errors",
        error_code: str = "ERR_ADMISSION_BLOCKED",
        status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY,
    ):
        self.findings = findings
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details={"findings": findings, "retryable": False}
        )


class AssignmentConflictError(BlockingValidationError):
    """Raised when vehicle/driver exclusivity fails at commit time."""

    def __init__(self, findings: List[Dict[str, Any]]):
        super().__init__(
            findings=findings,
            message="Vehicle or driver was committed to another trip before this one could be saved",
            error_code="ERR_ASSIGNMENT_CONFLICT",
            status_code=status.HTTP_409_CONFLICT,
        )


class InvalidStateTransitionError(AppException):
    """Raised when a status change is not allowed from the current state."""

    def __init__(self, entity: str, current: str, requested: str, reason: str = None):
        message = f"Cannot move {entity} from '{current}' to '{requested}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message=message,
            error_code="ERR_STATE_TRANSITION",
            status_code=status.HTTP_409_CONFLICT,
            details={"entity": entity, "current": current, "requested": requested}
        )


class TransientIOError(AppException):
    """Raised when the data store is unreachable or an operation timed out."""

    def __init__(self, operation: str, cause: str = None):
        message = f"Data store unavailable during {operation}"
        if cause:
            message = f"{message} ({cause})"
        super().__init__(
            message=message,
            error_code="ERR_STORE_UNAVAILABLE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"operation": operation, "retryable": True}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    if exc.status_code >= 500:
        logger.warning("Application error", extra={"error_code": exc.error_code, "path": request.url.path})
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__, extra={"path": request.url.path})

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
