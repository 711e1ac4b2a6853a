"""Output channel websocket.

A client opens ``/output/ws?sid=...`` once per session; every run of the
session pushes its events through this socket. Reconnecting replaces the
previous socket.
"""

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..dependencies import SessionStoreDep
from ..models import SinkWriteError, UnknownSessionError
from ..services import OutputChannel

logger = structlog.get_logger(__name__)
router = APIRouter()

UNKNOWN_SESSION_CLOSE_CODE = 4404
REPLACED_CLOSE_CODE = 4000


@router.websocket("/output/ws")
async def output_channel(websocket: WebSocket, sid: str, sessions: SessionStoreDep):
    """Attach a push channel to the session until the client disconnects."""
    if sessions.get(sid) is None:
        logger.warning("Output channel for unknown session", session_id=sid[:12])
        await websocket.close(code=UNKNOWN_SESSION_CLOSE_CODE)
        return

    await websocket.accept()
    channel = OutputChannel(websocket)

    try:
        previous = sessions.attach_channel(sid, channel)
    except UnknownSessionError:
        # Session removed between lookup and attach
        await channel.close(code=UNKNOWN_SESSION_CLOSE_CODE)
        return

    if previous is not None:
        await previous.close(code=REPLACED_CLOSE_CODE)

    try:
        await channel.send({"cmd": "init-output", "output": ""})
        while True:
            await websocket.receive_text()
            channel.refresh()
    except WebSocketDisconnect:
        logger.debug("Output channel disconnected", channel_id=channel.channel_id)
    except RuntimeError:
        # Closed from our side (replaced by a newer connection or swept)
        logger.debug("Output channel closed", channel_id=channel.channel_id)
    except SinkWriteError as e:
        logger.warning(
            "Output channel broken", channel_id=channel.channel_id, error=e.message
        )
    finally:
        channel.closed = True
        sessions.detach_channel(sid, channel)
