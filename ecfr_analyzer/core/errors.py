"""
eCFR Analyzer - Error Handling

Domain exceptions raised by the pipeline, and the structured error
responses returned by the API.

Pipeline taxonomy:
    EcfrAnalyzerError
    ├── SourceError               upstream eCFR / bulk archive failures
    │   ├── SourceTransportError  timeout, connection failure, non-2xx
    │   └── SourceParseError      body could not be decoded/validated
    ├── ContentUnavailableError   every content strategy failed
    ├── ImportAlreadyRunning      a run is active; new trigger rejected
    ├── ImportCancelled           run stopped by a cancel request
    └── PersistenceError          storage call failed
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..utils.context import get_request_id

logger = logging.getLogger(__name__)


# =============================================================================
# Domain Exceptions
# =============================================================================


class EcfrAnalyzerError(Exception):
    """Base class for all pipeline errors."""


class SourceError(EcfrAnalyzerError):
    """A call to an upstream source failed."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class SourceTransportError(SourceError):
    """Timeout, connection failure or non-2xx status from an upstream call."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message, url=url)
        self.status_code = status_code


class SourceParseError(SourceError):
    """An upstream body could not be parsed into the expected shape."""


class ContentUnavailableError(EcfrAnalyzerError):
    """All content download strategies failed for a title."""

    def __init__(self, title_number: int, failures: list[tuple[str, Exception]]) -> None:
        self.title_number = title_number
        self.failures = failures
        if failures:
            name, last = failures[-1]
            message = f"all content sources failed for title {title_number}; last ({name}): {last}"
        else:
            message = f"no content sources configured for title {title_number}"
        super().__init__(message)


class ImportAlreadyRunning(EcfrAnalyzerError):
    """Raised when an import is triggered while another run is active."""

    def __init__(self, run_id: str | None = None) -> None:
        super().__init__(f"An import is already running (run {run_id})" if run_id else "An import is already running")
        self.run_id = run_id


class ImportCancelled(EcfrAnalyzerError):
    """Raised inside a run once cancellation has been requested."""


class PersistenceError(EcfrAnalyzerError):
    """A storage operation failed."""


# =============================================================================
# Error Response Models
# =============================================================================


class ErrorDetail(BaseModel):
    """Field-level error information."""

    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """
    Standardized error response format.

    All API errors return this structure for consistency.
    """

    error: str  # Machine-readable error code
    message: str  # Human-readable error message
    status_code: int
    request_id: str | None = None
    details: list[ErrorDetail] | None = None


# =============================================================================
# Error Codes
# =============================================================================

ERROR_VALIDATION = "validation_error"
ERROR_NOT_FOUND = "not_found"
ERROR_BAD_REQUEST = "bad_request"
ERROR_METHOD_NOT_ALLOWED = "method_not_allowed"
ERROR_CONFLICT = "conflict"

ERROR_INTERNAL = "internal_error"
ERROR_DATABASE = "database_error"
ERROR_UPSTREAM = "upstream_error"
ERROR_SERVICE_UNAVAILABLE = "service_unavailable"

_STATUS_ERROR_CODES = {
    400: ERROR_BAD_REQUEST,
    404: ERROR_NOT_FOUND,
    405: ERROR_METHOD_NOT_ALLOWED,
    409: ERROR_CONFLICT,
    500: ERROR_INTERNAL,
    502: ERROR_UPSTREAM,
    503: ERROR_SERVICE_UNAVAILABLE,
}


# =============================================================================
# Exception Handlers
# =============================================================================


def create_error_response(
    status_code: int,
    error: str,
    message: str,
    details: list[ErrorDetail] | None = None,
) -> JSONResponse:
    """Create a standardized error response."""
    response = ErrorResponse(
        error=error,
        message=message,
        status_code=status_code,
        request_id=get_request_id(),
        details=details,
    )
    return JSONResponse(status_code=status_code, content=response.model_dump(exclude_none=True))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Map FastAPI/Starlette HTTP exceptions to the error envelope."""
    error_code = _STATUS_ERROR_CODES.get(exc.status_code, ERROR_INTERNAL)

    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code}: {exc.detail}",
            extra={"path": request.url.path, "status_code": exc.status_code},
        )

    if isinstance(exc.detail, dict):
        message = exc.detail.get("message", str(exc.detail))
    else:
        message = str(exc.detail)

    return create_error_response(status_code=exc.status_code, error=error_code, message=message)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Convert request validation errors to field-level details."""
    details = []
    for error in exc.errors():
        loc = error.get("loc", [])
        details.append(
            ErrorDetail(
                field=".".join(str(x) for x in loc) if loc else None,
                message=error.get("msg", "Validation error"),
                code=error.get("type", "validation"),
            )
        )

    logger.warning(f"Validation error on {request.url.path}: {len(details)} errors")

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        error=ERROR_VALIDATION,
        message="Request validation failed",
        details=details,
    )


async def import_running_handler(request: Request, exc: ImportAlreadyRunning) -> JSONResponse:
    return create_error_response(status_code=status.HTTP_409_CONFLICT, error=ERROR_CONFLICT, message=str(exc))


async def persistence_exception_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        error=ERROR_DATABASE,
        message="Database unavailable",
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all handler for unhandled exceptions.

    Logs the full traceback but returns a generic error to the client.
    """
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
        },
        exc_info=True,
    )
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error=ERROR_INTERNAL,
        message="An unexpected error occurred",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ImportAlreadyRunning, import_running_handler)  # type: ignore[arg-type]
    app.add_exception_handler(PersistenceError, persistence_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
