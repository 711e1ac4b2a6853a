"""Global error handlers for the process runner API."""

# Standard library imports
import traceback
import uuid

# Third-party imports
import structlog
from fastapi import Request
from starlette.exceptions import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

# Local application imports
from ..models.errors import (
    ProcessRunnerException,
    ErrorResponse,
    ErrorType,
    ErrorDetail,
)

logger = structlog.get_logger(__name__)


def generate_request_id() -> str:
    """Generate a unique request ID for error tracking."""
    return uuid.uuid4().hex[:12]


def _client_ip(request: Request) -> str:
    return getattr(request.client, "host", "unknown") if request.client else "unknown"


async def process_runner_exception_handler(
    request: Request, exc: ProcessRunnerException
) -> JSONResponse:
    """Handle ProcessRunnerException instances that escaped an endpoint."""

    if not exc.request_id:
        exc.request_id = generate_request_id()

    log_data = {
        "error_type": exc.error_type.value,
        "status_code": exc.status_code,
        "message": exc.message,
        "request_id": exc.request_id,
        "path": request.url.path,
        "method": request.method,
        "client_ip": _client_ip(request),
    }

    if exc.status_code >= 500:
        logger.error("Server error occurred", **log_data)
    else:
        logger.warning("Client error occurred", **log_data)

    return JSONResponse(
        status_code=exc.status_code, content=exc.to_response().model_dump()
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP errors, including unmatched routes and methods."""

    request_id = generate_request_id()

    error_type_mapping = {
        400: ErrorType.VALIDATION,
        404: ErrorType.RESOURCE_NOT_FOUND,
        405: ErrorType.VALIDATION,
        422: ErrorType.VALIDATION,
    }
    error_type = error_type_mapping.get(exc.status_code, ErrorType.INTERNAL_SERVER)

    logger.warning(
        "HTTP exception occurred",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        client_ip=_client_ip(request),
    )

    error_response = ErrorResponse(
        error=str(exc.detail), error_type=error_type, request_id=request_id
    )
    return JSONResponse(
        status_code=exc.status_code, content=error_response.model_dump()
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors."""

    request_id = generate_request_id()

    details = []
    for error in exc.errors():
        field_path = " -> ".join(str(loc) for loc in error["loc"])
        details.append(
            ErrorDetail(field=field_path, message=error["msg"], code=error["type"])
        )

    logger.warning(
        "Validation error occurred",
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        validation_errors=[d.model_dump() for d in details],
        client_ip=_client_ip(request),
    )

    error_response = ErrorResponse(
        error="Request validation failed",
        error_type=ErrorType.VALIDATION,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(status_code=422, content=error_response.model_dump())


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""

    request_id = generate_request_id()

    logger.error(
        "Unexpected exception occurred",
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        exception_type=type(exc).__name__,
        exception_message=str(exc),
        traceback=traceback.format_exc(),
        client_ip=_client_ip(request),
    )

    # Don't expose internal details
    error_response = ErrorResponse(
        error="An unexpected error occurred",
        error_type=ErrorType.INTERNAL_SERVER,
        request_id=request_id,
    )
    return JSONResponse(status_code=500, content=error_response.model_dump())
