"""Run and stop endpoints.

Both endpoints answer ``{"succ": bool}`` with HTTP 200 whatever happens to
the request; the run's output is delivered over the session's output
channel (see ``output.py``).
"""

from typing import Type, TypeVar

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..dependencies import RunOrchestratorDep, StopOrchestratorDep
from ..models import (
    ErrorDetail,
    RequestDecodeError,
    RunRequest,
    StopRequest,
    SuccResponse,
)
from ..utils.error_handlers import generate_request_id

logger = structlog.get_logger(__name__)
router = APIRouter()

ModelT = TypeVar("ModelT", bound=BaseModel)


async def decode_body(request: Request, model: Type[ModelT]) -> ModelT:
    """Parse the raw JSON body into ``model``.

    Raises:
        RequestDecodeError: Body is not JSON or misses/violates a field
    """
    body = await request.body()
    try:
        return model.model_validate_json(body)
    except PydanticValidationError as e:
        details = [
            ErrorDetail(
                field=" -> ".join(str(loc) for loc in error["loc"]) or None,
                message=error["msg"],
                code=error["type"],
            )
            for error in e.errors()
        ]
        raise RequestDecodeError(details=details)


@router.post("/run", response_model=SuccResponse, summary="Run an executable")
async def run_executable(request: Request, runner: RunOrchestratorDep) -> SuccResponse:
    """Start an executable for a session and stream its output to the session."""
    request_id = generate_request_id()

    try:
        run_request = await decode_body(request, RunRequest)
    except RequestDecodeError as e:
        logger.warning(
            "Rejected run request",
            request_id=request_id,
            details=[d.model_dump() for d in e.details],
        )
        return SuccResponse(succ=False)

    result = await runner.run(run_request, request_id=request_id)
    return SuccResponse(succ=result.succ)


@router.post("/stop", response_model=SuccResponse, summary="Stop a running executable")
async def stop_executable(request: Request, stopper: StopOrchestratorDep) -> SuccResponse:
    """Kill a running process of the session."""
    request_id = generate_request_id()

    try:
        stop_request = await decode_body(request, StopRequest)
    except RequestDecodeError as e:
        logger.warning(
            "Rejected stop request",
            request_id=request_id,
            details=[d.model_dump() for d in e.details],
        )
        return SuccResponse(succ=False)

    result = stopper.stop(stop_request, request_id=request_id)
    return SuccResponse(succ=result.succ)
