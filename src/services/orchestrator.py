"""Run and stop orchestration.

``RunOrchestrator.run`` spawns an executable for a session and returns as
soon as the child is started; the rest of the run (initial event, both
stream relays and reaping) lives in a background task owned by the
orchestrator. ``StopOrchestrator.stop`` kills a run by pid.

Usage:
    runner = RunOrchestrator(registry=registry, sessions=sessions)
    result = await runner.run(RunRequest(sid=sid, executable="/tmp/a.out"))

    stopper = StopOrchestrator(registry=registry, sessions=sessions)
    stopper.stop(StopRequest(sid=sid, pid=result.pid))
"""

import asyncio
import os
import uuid
from dataclasses import dataclass
from typing import List, Optional, Set

import structlog

from ..config import settings
from ..models import (
    RunCommand,
    RunEvent,
    RunRequest,
    StopRequest,
    ProcessRunnerException,
    PipeAcquisitionError,
    ProcessNotFoundError,
    ProcessStartError,
    SinkWriteError,
    UnknownSessionError,
)
from .registry import ProcessRegistry, RunningProcess
from .relay import STDERR, STDOUT, StreamRelay
from .sandbox import NsjailConfig
from .sessions import Session, SessionStore

logger = structlog.get_logger(__name__)


@dataclass
class OperationResult:
    """Outcome of a run or stop request."""

    succ: bool
    pid: Optional[int] = None
    error: Optional[ProcessRunnerException] = None


@dataclass
class RunContext:
    """Context object passed through the run pipeline."""

    request: RunRequest
    run_id: str
    session: Optional[Session] = None
    work_dir: Optional[str] = None
    argv: Optional[List[str]] = None
    process: Optional[asyncio.subprocess.Process] = None
    entry: Optional[RunningProcess] = None


class RunOrchestrator:
    """Spawns executables and supervises their output.

    Pipeline:
    1. Look up the session
    2. Resolve working directory and command line (nsjail when sandboxed)
    3. Spawn with piped stdout/stderr
    4. Register the process
    5. In a background task: push the initial event, relay both streams
       and reap the child
    """

    def __init__(
        self,
        registry: ProcessRegistry,
        sessions: SessionStore,
        nsjail_config: Optional[NsjailConfig] = None,
        stderr_css_class: Optional[str] = None,
    ):
        self.registry = registry
        self.sessions = sessions
        self.nsjail_config = nsjail_config or NsjailConfig()
        self.stderr_css_class = stderr_css_class or settings.stderr_css_class
        self._tasks: Set[asyncio.Task] = set()

    @property
    def new_process_group(self) -> bool:
        # The registry signals whole groups only if each child leads its own.
        return self.registry.kill_process_group

    @property
    def active_runs(self) -> int:
        return len(self._tasks)

    async def run(self, request: RunRequest, request_id: str = "") -> OperationResult:
        """Start a run.

        Args:
            request: Session id and absolute executable path
            request_id: Optional request ID for logging

        Returns:
            OperationResult with the child's pid on success
        """
        ctx = RunContext(request=request, run_id=uuid.uuid4().hex[:8])

        try:
            ctx.session = self.sessions.require(request.sid)
        except UnknownSessionError as e:
            logger.warning(
                "Run requested for unknown session",
                session_id=request.sid[:12],
                request_id=request_id,
            )
            return OperationResult(succ=False, error=e)

        try:
            self._prepare(ctx)
            await self._spawn(ctx)
        except (PipeAcquisitionError, ProcessStartError) as e:
            logger.error(
                "Run failed to start",
                session_id=request.sid[:12],
                run_id=ctx.run_id,
                executable=request.executable,
                error=e.message,
                request_id=request_id,
            )
            await self._push_start_failure(ctx)
            return OperationResult(succ=False, error=e)

        ctx.entry = RunningProcess(
            process=ctx.process,
            executable=request.executable,
            run_id=ctx.run_id,
        )
        self.registry.add(ctx.session.session_id, ctx.entry)

        task = asyncio.create_task(self._pipeline(ctx), name=f"run-{ctx.run_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            "Run started",
            session_id=ctx.session.session_id[:12],
            username=ctx.session.username,
            pid=ctx.process.pid,
            run_id=ctx.run_id,
            executable=request.executable,
            sandboxed=self.nsjail_config.enabled,
        )
        return OperationResult(succ=True, pid=ctx.process.pid)

    def _prepare(self, ctx: RunContext) -> None:
        executable = ctx.request.executable
        ctx.work_dir = os.path.dirname(executable)

        if self.nsjail_config.enabled:
            # nsjail would start fine and only fail inside the jail
            if not os.path.isfile(executable):
                raise ProcessStartError(executable, "no such file")
            ctx.argv = self.nsjail_config.wrap(ctx.work_dir, [executable])
        else:
            ctx.argv = [executable]

    async def _spawn(self, ctx: RunContext) -> None:
        executable = ctx.request.executable
        try:
            process = await asyncio.create_subprocess_exec(
                *ctx.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=ctx.work_dir,
                start_new_session=self.new_process_group,
            )
        except (OSError, ValueError) as e:
            raise ProcessStartError(executable, str(e)) from e

        if process.stdout is None or process.stderr is None:
            process.kill()
            await process.wait()
            raise PipeAcquisitionError(f"No stdout/stderr pipe for {executable}")

        ctx.process = process

    async def _push_start_failure(self, ctx: RunContext) -> None:
        channel = ctx.session.channel
        if channel is None:
            return
        try:
            await channel.push(RunEvent(cmd=RunCommand.RUN_DONE, output=""))
        except SinkWriteError as e:
            logger.error("Failed to push run-done", run_id=ctx.run_id, error=e.message)

    async def _push_initial(self, ctx: RunContext) -> None:
        channel = ctx.session.channel
        if channel is None:
            return
        try:
            await channel.push(RunEvent(cmd=RunCommand.RUN, output="", pid=ctx.entry.pid))
        except SinkWriteError as e:
            logger.error("Failed to push run start", run_id=ctx.run_id, error=e.message)

    async def _pipeline(self, ctx: RunContext) -> None:
        session, entry, process = ctx.session, ctx.entry, ctx.process

        await self._push_initial(ctx)

        stdout_relay = StreamRelay(
            process.stdout, session, entry, self.registry, STDOUT, self.stderr_css_class
        )
        stderr_relay = StreamRelay(
            process.stderr, session, entry, self.registry, STDERR, self.stderr_css_class
        )

        try:
            async with asyncio.TaskGroup() as group:
                group.create_task(stdout_relay.run(), name=f"run-{ctx.run_id}-stdout")
                group.create_task(stderr_relay.run(), name=f"run-{ctx.run_id}-stderr")
                group.create_task(self._reap(ctx), name=f"run-{ctx.run_id}-reap")
        except asyncio.CancelledError:
            logger.warning("Run cancelled", pid=entry.pid, run_id=ctx.run_id)
            raise
        except Exception as e:
            logger.error(
                "Run pipeline failed",
                pid=entry.pid,
                run_id=ctx.run_id,
                error=str(e),
            )
        finally:
            if process.returncode is None:
                self.registry.terminate(entry)
            self.registry.remove(session.session_id, entry)

    async def _reap(self, ctx: RunContext) -> None:
        returncode = await ctx.process.wait()
        logger.debug(
            "Process exited",
            pid=ctx.entry.pid,
            run_id=ctx.run_id,
            returncode=returncode,
        )

    async def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for all in-flight runs.

        Returns:
            True if every run finished within ``timeout``
        """
        tasks = list(self._tasks)
        if not tasks:
            return True
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Kill every registered process and wind down the run tasks."""
        killed = self.registry.kill_all()
        if await self.join(timeout=timeout):
            logger.info("Run orchestrator stopped", killed=killed)
            return

        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        logger.warning(
            "Run orchestrator stopped with cancelled runs",
            killed=killed,
            cancelled=len(pending),
        )


class StopOrchestrator:
    """Terminates runs on client request."""

    def __init__(self, registry: ProcessRegistry, sessions: SessionStore):
        self.registry = registry
        self.sessions = sessions

    def stop(self, request: StopRequest, request_id: str = "") -> OperationResult:
        """Kill the session's process with ``request.pid``.

        Succeeds whether or not the process was still running.
        """
        try:
            self.sessions.require(request.sid)
        except UnknownSessionError as e:
            logger.warning(
                "Stop requested for unknown session",
                session_id=request.sid[:12],
                request_id=request_id,
            )
            return OperationResult(succ=False, error=e)

        try:
            self.registry.kill(request.sid, request.pid, missing_ok=False)
        except ProcessNotFoundError as e:
            logger.debug("Nothing to stop", error=e.message, request_id=request_id)

        return OperationResult(succ=True, pid=request.pid)
