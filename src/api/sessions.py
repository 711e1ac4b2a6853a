"""Session endpoints.

Sessions are normally owned by the surrounding application's login flow;
these endpoints expose the minimal lifecycle needed to drive runs.
"""

import structlog
from fastapi import APIRouter

from ..dependencies import ProcessRegistryDep, SessionStoreDep
from ..models import (
    SessionCreate,
    SessionCreateResponse,
    SessionInfoResponse,
    SuccResponse,
)

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/sessions", response_model=SessionCreateResponse)
async def create_session(body: SessionCreate, sessions: SessionStoreDep):
    session = sessions.create(body.username)
    return SessionCreateResponse(sid=session.session_id)


@router.get("/sessions/{sid}", response_model=SessionInfoResponse)
async def get_session(
    sid: str, sessions: SessionStoreDep, registry: ProcessRegistryDep
):
    """Session details with the pids of its running processes."""
    session = sessions.require(sid)
    return SessionInfoResponse(
        sid=session.session_id,
        username=session.username,
        processes=registry.pids(sid),
        output_attached=session.channel is not None,
    )


@router.delete("/sessions/{sid}", response_model=SuccResponse)
async def delete_session(
    sid: str, sessions: SessionStoreDep, registry: ProcessRegistryDep
):
    """Kill every running process of the session and forget it."""
    session = sessions.require(sid)
    killed = registry.kill_all(sid)

    channel = session.channel
    sessions.remove(sid)
    if channel is not None:
        await channel.close()

    logger.info("Session deleted", session_id=sid[:12], killed=killed)
    return SuccResponse()
