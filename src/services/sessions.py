"""Sessions and their output channels.

A session is one client context. It owns at most one output channel at a
time; the channel is attached when the client opens the output websocket and
detached when it goes away, so producers must always re-read
``session.channel`` and treat ``None`` as "nobody is listening".
"""

import asyncio
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import structlog

from ..models.errors import SinkWriteError, UnknownSessionError
from ..models.run import RunEvent

logger = structlog.get_logger(__name__)


class JSONTransport(Protocol):
    """Anything that can push JSON to a client (e.g. a FastAPI WebSocket)."""

    async def send_json(self, data: Any) -> None: ...


class OutputChannel:
    """Write-serialized push channel to one connected client.

    Both stream relays of a run, the run pipeline itself and any other
    producer share the channel; the internal lock guarantees that only one
    frame is in flight on the transport at a time.
    """

    def __init__(self, transport: JSONTransport, channel_id: Optional[str] = None):
        self._transport = transport
        self._lock = asyncio.Lock()
        self.channel_id = channel_id or uuid.uuid4().hex[:8]
        self.last_active = time.monotonic()
        self.closed = False

    async def push(self, event: RunEvent) -> None:
        """Send a run event.

        Raises:
            SinkWriteError: The channel is closed or the transport failed
        """
        await self.send(event.to_wire())

    async def send(self, payload: Dict[str, Any]) -> None:
        async with self._lock:
            if self.closed:
                raise SinkWriteError(f"Output channel {self.channel_id} is closed")
            try:
                await self._transport.send_json(payload)
            except Exception as e:
                self.closed = True
                raise SinkWriteError(
                    f"Output channel {self.channel_id} write failed: {e}"
                ) from e
        self.refresh()

    def refresh(self) -> None:
        """Mark the channel as active now."""
        self.last_active = time.monotonic()

    def idle_seconds(self) -> float:
        return time.monotonic() - self.last_active

    async def close(self, code: int = 1000) -> None:
        """Close the underlying transport if it supports closing."""
        self.closed = True
        closer = getattr(self._transport, "close", None)
        if closer is None:
            return
        try:
            await closer(code=code)
        except Exception as e:
            logger.debug(
                "Output channel close failed", channel_id=self.channel_id, error=str(e)
            )


@dataclass
class Session:
    """One authenticated client context."""

    session_id: str
    username: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    channel: Optional[OutputChannel] = None


class SessionStore:
    """In-memory session table."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}

    def create(self, username: str) -> Session:
        session = Session(session_id=uuid.uuid4().hex, username=username)
        with self._lock:
            self._sessions[session.session_id] = session
        logger.info(
            "Session created", session_id=session.session_id[:12], username=username
        )
        return session

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        """Get a session or raise UnknownSessionError."""
        session = self.get(session_id)
        if session is None:
            raise UnknownSessionError(session_id)
        return session

    def remove(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            session.channel = None
            logger.info("Session removed", session_id=session_id[:12])
        return session

    def attach_channel(
        self, session_id: str, channel: OutputChannel
    ) -> Optional[OutputChannel]:
        """Make ``channel`` the session's output channel.

        Returns:
            The channel it replaced, if any
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise UnknownSessionError(session_id)
            previous, session.channel = session.channel, channel

        logger.info(
            "Output channel attached",
            session_id=session_id[:12],
            channel_id=channel.channel_id,
            replaced=previous.channel_id if previous else None,
        )
        return previous

    def detach_channel(
        self, session_id: str, channel: Optional[OutputChannel] = None
    ) -> bool:
        """Detach the session's channel.

        When ``channel`` is given it is only detached if it is still the
        current one, so a late disconnect cannot drop a newer connection.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.channel is None:
                return False
            if channel is not None and session.channel is not channel:
                return False
            detached, session.channel = session.channel, None

        logger.info(
            "Output channel detached",
            session_id=session_id[:12],
            channel_id=detached.channel_id,
        )
        return True

    def detach_idle_channels(self, max_idle_seconds: float) -> List[OutputChannel]:
        """Detach every channel idle for longer than ``max_idle_seconds``."""
        detached = []
        with self._lock:
            for session in self._sessions.values():
                channel = session.channel
                if channel is not None and channel.idle_seconds() > max_idle_seconds:
                    session.channel = None
                    detached.append(channel)

        if detached:
            logger.info("Detached idle output channels", count=len(detached))
        return detached

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)
