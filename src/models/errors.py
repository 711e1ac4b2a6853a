"""Error models and exception classes for the process runner API."""

import time
from typing import Optional, List
from pydantic import BaseModel, Field
from enum import Enum


class ErrorType(str, Enum):
    """Error type enumeration."""

    VALIDATION = "validation"
    RESOURCE_NOT_FOUND = "resource_not_found"
    PROCESS_START = "process_start"
    STREAM = "stream"
    TRANSPORT = "transport"
    INTERNAL_SERVER = "internal_server"


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: Optional[str] = Field(None, description="Field name for validation errors")
    message: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")


class ErrorResponse(BaseModel):
    """Standardized error response model."""

    error: str = Field(..., description="Main error message")
    error_type: ErrorType = Field(..., description="Error category")
    details: Optional[List[ErrorDetail]] = Field(
        None, description="Additional error details"
    )
    request_id: Optional[str] = Field(
        None, description="Request identifier for tracking"
    )
    timestamp: float = Field(default_factory=time.time, description="Error timestamp")

    class Config:
        use_enum_values = True


# Custom Exception Classes


class ProcessRunnerException(Exception):
    """Base exception for the process runner API."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL_SERVER,
        status_code: int = 500,
        details: Optional[List[ErrorDetail]] = None,
        request_id: Optional[str] = None,
    ):
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        self.details = details or []
        self.request_id = request_id
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to error response model."""
        return ErrorResponse(
            error=self.message,
            error_type=self.error_type,
            details=self.details if self.details else None,
            request_id=self.request_id,
        )


class RequestDecodeError(ProcessRunnerException):
    """Malformed or incomplete request body."""

    def __init__(self, message: str = "Malformed request body", **kwargs):
        super().__init__(
            message=message, error_type=ErrorType.VALIDATION, status_code=400, **kwargs
        )


class UnknownSessionError(ProcessRunnerException):
    """The referenced session does not exist."""

    def __init__(self, session_id: str, **kwargs):
        self.session_id = session_id
        super().__init__(
            message=f"Unknown session: {session_id}",
            error_type=ErrorType.RESOURCE_NOT_FOUND,
            status_code=404,
            **kwargs,
        )


class PipeAcquisitionError(ProcessRunnerException):
    """stdout/stderr pipes of a child could not be obtained."""

    def __init__(self, message: str = "Failed to acquire process pipes", **kwargs):
        super().__init__(
            message=message, error_type=ErrorType.PROCESS_START, status_code=500, **kwargs
        )


class ProcessStartError(ProcessRunnerException):
    """The executable could not be started."""

    def __init__(self, executable: str, reason: str, **kwargs):
        self.executable = executable
        super().__init__(
            message=f"Failed to start {executable}: {reason}",
            error_type=ErrorType.PROCESS_START,
            status_code=500,
            **kwargs,
        )


class SinkWriteError(ProcessRunnerException):
    """Pushing an event to the session's output channel failed."""

    def __init__(self, message: str = "Output channel write failed", **kwargs):
        super().__init__(
            message=message, error_type=ErrorType.TRANSPORT, status_code=500, **kwargs
        )


class StreamReadError(ProcessRunnerException):
    """A child stream failed with an I/O error rather than a clean EOF."""

    def __init__(self, stream: str, reason: str, **kwargs):
        self.stream = stream
        super().__init__(
            message=f"Read failed on {stream}: {reason}",
            error_type=ErrorType.STREAM,
            status_code=500,
            **kwargs,
        )


class ProcessNotFoundError(ProcessRunnerException):
    """No running process with the given pid in the session."""

    def __init__(self, session_id: str, pid: int, **kwargs):
        self.session_id = session_id
        self.pid = pid
        super().__init__(
            message=f"No running process {pid} in session {session_id}",
            error_type=ErrorType.RESOURCE_NOT_FOUND,
            status_code=404,
            **kwargs,
        )
