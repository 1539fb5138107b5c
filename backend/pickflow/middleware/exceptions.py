"""Domain exceptions and handlers for consistent error responses.

Every business failure carries a stable ``error_code`` that callers branch
on; the message is for humans only.  Handlers render all failures as:

    {
        "error": {
            "code": "InsufficientStock",
            "message": "Batch B-0042 has 12 available, cannot reserve 20",
            "details": {...}  // optional
        }
    }
"""

import logging
import traceback
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class PickflowException(Exception):
    """Base exception for pickflow application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Union[dict, list, None] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


# ── Resource conflicts (validated before any mutation) ───────

class InsufficientStock(PickflowException):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="InsufficientStock",
            details=details,
        )


class OverAllocation(PickflowException):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="OverAllocation",
            details=details,
        )


# ── State conflicts ──────────────────────────────────────────

class NotReady(PickflowException):
    """Dispatch refused because some orders on the load are not ready."""

    def __init__(self, load_code: str, not_ready: list[dict]):
        self.not_ready = not_ready
        super().__init__(
            message=f"{len(not_ready)} order(s) on load {load_code} are not ready for dispatch",
            status_code=status.HTTP_409_CONFLICT,
            error_code="NotReady",
            details={"orders": not_ready},
        )


class NotDispatched(PickflowException):
    def __init__(self, load_code: str, current_status: str):
        super().__init__(
            message=f"Load {load_code} is '{current_status}', not in transit",
            status_code=status.HTTP_409_CONFLICT,
            error_code="NotDispatched",
        )


class LoadActive(PickflowException):
    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="LoadActive",
        )


class LoadNotEmpty(PickflowException):
    def __init__(self, load_code: str, item_count: int):
        super().__init__(
            message=f"Load {load_code} still has {item_count} order(s). Remove all orders first.",
            status_code=status.HTTP_409_CONFLICT,
            error_code="LoadNotEmpty",
        )


class OrderAlreadyLoaded(PickflowException):
    def __init__(self, order_number: str, load_code: str):
        super().__init__(
            message=f"Order {order_number} is already on active load {load_code}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="OrderAlreadyLoaded",
            details={"load_code": load_code},
        )


class AlreadyDispatching(PickflowException):
    def __init__(self, load_code: str):
        super().__init__(
            message=f"Load {load_code} is being dispatched by another request",
            status_code=status.HTTP_409_CONFLICT,
            error_code="AlreadyDispatching",
        )


class InvalidStateTransition(PickflowException):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="InvalidStateTransition",
            details=details,
        )


class DispatchFailed(PickflowException):
    """A multi-order dispatch/recall step failed and was rolled back."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="DispatchFailed",
            details=details,
        )


class ResourceNotFoundError(PickflowException):
    """Exception for resources not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="ResourceNotFound",
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    """Create standardized error response."""
    content = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if details:
        content["error"]["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content,
    )


async def pickflow_exception_handler(
    request: Request,
    exc: PickflowException,
) -> JSONResponse:
    """Handle domain exceptions."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "pickflow exception: %s - %s",
        exc.error_code,
        exc.message,
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    if exc.status_code >= 500:
        logger.error(
            "HTTP %s: %s",
            exc.status_code,
            exc.detail,
            extra={
                "path": request.url.path,
                "method": request.method,
            },
        )

    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(
        "Validation error on %s",
        request.url.path,
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


async def database_exception_handler(
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    """Handle database integrity errors (unique, foreign key, check constraints)."""
    logger.error(
        "Database integrity error on %s: %s",
        request.url.path,
        exc,
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    error_msg = str(exc.orig) if hasattr(exc, "orig") else str(exc)

    if "unique" in error_msg.lower():
        message = "A record with this value already exists"
        error_code = "DUPLICATE_RECORD"
    elif "foreign key" in error_msg.lower():
        message = "Referenced record does not exist"
        error_code = "FOREIGN_KEY_VIOLATION"
    elif "check" in error_msg.lower():
        message = "Quantity constraint violated"
        error_code = "CHECK_VIOLATION"
    else:
        message = "Database constraint violation"
        error_code = "INTEGRITY_ERROR"

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message=message,
        error_code=error_code,
    )


async def operational_exception_handler(
    request: Request,
    exc: OperationalError,
) -> JSONResponse:
    """Handle database operational errors (connection issues, timeouts)."""
    logger.error(
        "Database operational error on %s: %s",
        request.url.path,
        exc,
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message="Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle all other unhandled exceptions."""
    logger.error(
        "Unhandled exception on %s: %s",
        request.url.path,
        exc,
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
        exc_info=True,
    )

    # Don't expose internal details
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    app.add_exception_handler(PickflowException, pickflow_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, database_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
