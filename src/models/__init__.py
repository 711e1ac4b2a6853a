"""Data models for the process runner API."""

from .run import (
    RunCommand,
    RunRequest,
    StopRequest,
    SuccResponse,
    RunEvent,
    SessionCreate,
    SessionCreateResponse,
    SessionInfoResponse,
)
from .errors import (
    ErrorType,
    ErrorDetail,
    ErrorResponse,
    ProcessRunnerException,
    RequestDecodeError,
    UnknownSessionError,
    PipeAcquisitionError,
    ProcessStartError,
    SinkWriteError,
    StreamReadError,
    ProcessNotFoundError,
)

__all__ = [
    # Run models
    "RunCommand",
    "RunRequest",
    "StopRequest",
    "SuccResponse",
    "RunEvent",
    # Session models
    "SessionCreate",
    "SessionCreateResponse",
    "SessionInfoResponse",
    # Error models
    "ErrorType",
    "ErrorDetail",
    "ErrorResponse",
    "ProcessRunnerException",
    "RequestDecodeError",
    "UnknownSessionError",
    "PipeAcquisitionError",
    "ProcessStartError",
    "SinkWriteError",
    "StreamReadError",
    "ProcessNotFoundError",
]
