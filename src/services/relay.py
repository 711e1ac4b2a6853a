"""Incremental relay of a child's stdout/stderr to the session's output channel.

Each stream is drained one decoded character at a time so the client sees
output as soon as the child produces it. Output is rendered as HTML on the
client, hence every fragment goes through ``escape_markup``.
"""

import asyncio
import codecs
from typing import Optional

import structlog

from ..models.errors import SinkWriteError, StreamReadError
from ..models.run import RunCommand, RunEvent
from .registry import ProcessRegistry, RunningProcess
from .sessions import Session

logger = structlog.get_logger(__name__)

STDOUT = "stdout"
STDERR = "stderr"


def escape_markup(text: str) -> str:
    """Escape ``<`` and ``>``; this exact mapping is part of the wire contract."""
    return text.replace("<", "&lt;").replace(">", "&gt;")


class StreamRelay:
    """Drains one stream of a running process.

    The stdout relay is the primary one: when its stream ends it deregisters
    the process and pushes the single ``run-done`` event. The stderr relay
    only forwards fragments, wrapped in a styled span.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        session: Session,
        entry: RunningProcess,
        registry: ProcessRegistry,
        stream: str = STDOUT,
        stderr_css_class: str = "stderr",
    ):
        if stream not in (STDOUT, STDERR):
            raise ValueError(f"Unknown stream: {stream}")
        self._reader = reader
        self._session = session
        self._entry = entry
        self._registry = registry
        self._stream = stream
        self._stderr_css_class = stderr_css_class
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._forwarding = True
        self.forwarded = 0

    @property
    def stream(self) -> str:
        return self._stream

    @property
    def primary(self) -> bool:
        return self._stream == STDOUT

    async def run(self) -> None:
        """Relay until end of stream, then run the terminal step."""
        while True:
            try:
                char = await self._read_char()
            except StreamReadError as e:
                logger.error(
                    "Stream read failed",
                    stream=self._stream,
                    pid=self._entry.pid,
                    run_id=self._entry.run_id,
                    error=e.message,
                )
                break

            if char is None:
                break

            # Once forwarding has stopped keep draining so the child never
            # blocks on a full pipe.
            if not self._forwarding:
                continue

            channel = self._session.channel
            if channel is None:
                logger.debug(
                    "Output channel absent, discarding stream",
                    stream=self._stream,
                    pid=self._entry.pid,
                    run_id=self._entry.run_id,
                )
                self._forwarding = False
                continue

            try:
                await channel.push(
                    RunEvent(cmd=RunCommand.RUN, output=self._format(char), pid=self._entry.pid)
                )
                self.forwarded += 1
            except SinkWriteError as e:
                logger.error(
                    "Failed to push output",
                    stream=self._stream,
                    pid=self._entry.pid,
                    run_id=self._entry.run_id,
                    error=e.message,
                )
                self._forwarding = False

        await self._finish(self._decoder.decode(b"", final=True))

    async def _read_char(self) -> Optional[str]:
        """Next decoded character(s), or None at end of stream."""
        while True:
            try:
                chunk = await self._reader.read(1)
            except OSError as e:
                raise StreamReadError(self._stream, str(e)) from e
            if not chunk:
                return None
            text = self._decoder.decode(chunk)
            if text:
                return text

    def _format(self, text: str) -> str:
        escaped = escape_markup(text)
        if self._stream == STDERR:
            return f"<span class='{self._stderr_css_class}'>{escaped}</span>"
        return escaped

    async def _finish(self, tail: str) -> None:
        if not self.primary:
            if tail and self._forwarding:
                await self._push_quietly(
                    RunEvent(cmd=RunCommand.RUN, output=self._format(tail), pid=self._entry.pid)
                )
            return

        self._registry.remove(self._session.session_id, self._entry)

        logger.info(
            "Run finished",
            session_id=self._session.session_id[:12],
            pid=self._entry.pid,
            run_id=self._entry.run_id,
            executable=self._entry.executable,
            forwarded=self.forwarded,
        )

        # A client that reconnected mid-run still gets the terminal event.
        await self._push_quietly(
            RunEvent(cmd=RunCommand.RUN_DONE, output=self._format(tail), pid=self._entry.pid)
        )

    async def _push_quietly(self, event: RunEvent) -> None:
        channel = self._session.channel
        if channel is None or channel.closed:
            return
        try:
            await channel.push(event)
        except SinkWriteError as e:
            logger.error(
                "Failed to push output",
                stream=self._stream,
                pid=self._entry.pid,
                run_id=self._entry.run_id,
                cmd=event.cmd.value,
                error=e.message,
            )
