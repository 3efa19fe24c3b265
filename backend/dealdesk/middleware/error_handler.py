"""
Global error handling middleware.

WHAT: Translate domain exceptions to HTTP responses
WHY: Clients map the error code back to the same exception type they would
     get from a local store, so retry/surface decisions stay type-based
HOW: FastAPI exception handlers returning {error, message, details, timestamp}
"""

from datetime import datetime

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..utils.exceptions import (
    DealDeskException,
    NotFoundError,
    PreconditionFailedError,
    TransientStoreError,
    ValidationFailedError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

STATUS_BY_EXCEPTION = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PreconditionFailedError, status.HTTP_409_CONFLICT),
    (ValidationFailedError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (TransientStoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def _error_body(code: str, message: str, details) -> dict:
    return {
        "error": code,
        "message": message,
        "details": details,
        "timestamp": datetime.now().isoformat()
    }


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """
    Handle FastAPI RequestValidationError.

    WHAT: Request payload did not match the schema
    WHY: Malformed requests never reach the store
    HOW: Return 400 with JSON-serializable field errors
    """
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")

    cleaned_errors = []
    for error in exc.errors():
        cleaned_error = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
            "input": error.get("input")
        }
        # ctx may carry exception instances
        if "ctx" in error:
            cleaned_error["ctx"] = {
                k: str(v) if isinstance(v, Exception) else v
                for k, v in error["ctx"].items()
            }
        cleaned_errors.append(cleaned_error)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("VALIDATION_ERROR", "Request validation failed", cleaned_errors)
    )


async def dealdesk_exception_handler(request: Request, exc: DealDeskException):
    """
    Handle DealDeskException and subclasses.

    Status codes: not found 404, precondition 409, validation 422, transient 503.
    Anything else in the taxonomy is a 400.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    for exc_class, code in STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_class):
            status_code = code
            break

    if status_code >= 500:
        logger.error(f"Store failure on {request.method} {request.url.path}: {exc.code} - {exc.message}")
    else:
        logger.warning(f"Rejected {request.method} {request.url.path}: {exc.code} - {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content=_error_body(exc.code, exc.message, exc.details)
    )


def register_exception_handlers(app):
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(DealDeskException, dealdesk_exception_handler)

    logger.info("Exception handlers registered")
