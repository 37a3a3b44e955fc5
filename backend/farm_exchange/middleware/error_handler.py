"""
Global error handling middleware.

WHAT: Translate marketplace exceptions to HTTP responses
WHY: Consistent error bodies with stable codes and proper status codes
HOW: FastAPI exception handlers keyed on the exception hierarchy
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from datetime import datetime

from ..utils.exceptions import (
    MarketplaceError,
    UnauthenticatedError,
    NotFoundError,
    ForbiddenError,
    InsufficientQuantityError,
    InvalidStateError,
    BusyError,
    ConflictError,
    ValidationError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

STATUS_BY_ERROR = (
    (UnauthenticatedError, status.HTTP_401_UNAUTHORIZED),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (InsufficientQuantityError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (BusyError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
)


def status_for(exc: MarketplaceError) -> int:
    for error_cls, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return status.HTTP_400_BAD_REQUEST


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """
    Handle FastAPI RequestValidationError.

    WHAT: Request validation failed
    WHY: Invalid request payload
    HOW: Return 400 with field errors
    """
    logger.warning(f"Validation error: {exc.errors()}")

    # Clean up error details to be JSON serializable
    cleaned_errors = []
    for error in exc.errors():
        cleaned_error = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }
        if "ctx" in error:
            cleaned_error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        cleaned_errors.append(cleaned_error)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": cleaned_errors,
            "timestamp": datetime.now().isoformat()
        }
    )


async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    """
    Handle MarketplaceError and subclasses.

    WHAT: Typed business failure
    WHY: The caller-facing layer needs a stable code and a matching status
    HOW: Status chosen by exception class, body carries code and details
    """
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")

    headers = {"Retry-After": "1"} if isinstance(exc, BusyError) else None
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content={
            "error": exc.code,
            "message": exc.message,
            "details": exc.details,
            "timestamp": datetime.now().isoformat()
        }
    )


def register_exception_handlers(app):
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)

    logger.info("Exception handlers registered")
