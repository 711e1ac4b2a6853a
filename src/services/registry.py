"""Per-session registry of running child processes.

The registry is the only state shared between the run pipeline, the stream
relays and stop requests. Every read/modify/write happens under a single
registry-wide lock; none of the operations await, so a plain threading lock
also keeps the registry safe for callers outside the event loop.
"""

import os
import signal
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import structlog

from ..models.errors import ProcessNotFoundError

logger = structlog.get_logger(__name__)


@dataclass(eq=False)
class RunningProcess:
    """Handle for one spawned executable.

    Identity is the handle itself, not the pid: a pid can be reused by the OS
    after the original child has been reaped.
    """

    process: object  # asyncio.subprocess.Process
    executable: str
    run_id: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def pid(self) -> int:
        return self.process.pid


class ProcessRegistry:
    """Mapping of session id -> set of running processes."""

    def __init__(self, kill_process_group: bool = True):
        """Initialize an empty registry.

        Args:
            kill_process_group: Signal the child's whole process group on kill.
                Only valid when children are started in their own session.
        """
        self._kill_process_group = kill_process_group
        self._lock = threading.Lock()
        self._processes: Dict[str, Dict[int, RunningProcess]] = {}

    @property
    def kill_process_group(self) -> bool:
        """Whether children must be spawned as leaders of their own group."""
        return self._kill_process_group

    def add(self, session_id: str, entry: RunningProcess) -> None:
        """Register a freshly spawned process under a session."""
        with self._lock:
            # A stale entry with the same pid means the OS reused it; drop it.
            for other_sid, procs in self._processes.items():
                stale = procs.get(entry.pid)
                if stale is not None and stale is not entry:
                    del procs[entry.pid]
                    logger.warning(
                        "Evicted stale process entry",
                        pid=entry.pid,
                        session_id=other_sid[:12],
                    )
            self._processes.setdefault(session_id, {})[entry.pid] = entry
            self._prune()

        logger.debug(
            "Process registered",
            session_id=session_id[:12],
            pid=entry.pid,
            run_id=entry.run_id,
        )

    def remove(self, session_id: str, entry: RunningProcess) -> bool:
        """Remove a process; removing an absent process is a no-op.

        Returns:
            True if the entry was present and has been removed
        """
        with self._lock:
            procs = self._processes.get(session_id)
            if not procs or procs.get(entry.pid) is not entry:
                return False
            del procs[entry.pid]
            self._prune()

        logger.debug(
            "Process deregistered",
            session_id=session_id[:12],
            pid=entry.pid,
            run_id=entry.run_id,
        )
        return True

    def kill(self, session_id: str, pid: int, missing_ok: bool = True) -> bool:
        """Terminate and deregister the process with ``pid`` in a session.

        Args:
            session_id: Owning session
            pid: Process id reported in the initial run event
            missing_ok: When False, raise ProcessNotFoundError for unknown pids

        Returns:
            True if a matching process was found and signalled
        """
        with self._lock:
            procs = self._processes.get(session_id)
            entry = procs.pop(pid, None) if procs else None
            if entry is not None:
                self._send_kill(entry)
                self._prune()

        if entry is None:
            if not missing_ok:
                raise ProcessNotFoundError(session_id, pid)
            return False

        logger.info(
            "Process killed",
            session_id=session_id[:12],
            pid=pid,
            run_id=entry.run_id,
        )
        return True

    def kill_all(self, session_id: Optional[str] = None) -> int:
        """Kill every process of one session, or of all sessions when None.

        Returns:
            Number of processes signalled
        """
        with self._lock:
            if session_id is None:
                victims = [p for procs in self._processes.values() for p in procs.values()]
                self._processes.clear()
            else:
                victims = list(self._processes.pop(session_id, {}).values())
            for entry in victims:
                self._send_kill(entry)

        if victims:
            logger.info(
                "Killed running processes",
                session_id=session_id[:12] if session_id else "all",
                count=len(victims),
            )
        return len(victims)

    def terminate(self, entry: RunningProcess) -> None:
        """Signal a process without touching the registry mapping."""
        with self._lock:
            self._send_kill(entry)

    def pids(self, session_id: str) -> List[int]:
        """Sorted pids currently registered for a session."""
        with self._lock:
            return sorted(self._processes.get(session_id, {}))

    def contains(self, session_id: str, pid: int) -> bool:
        with self._lock:
            return pid in self._processes.get(session_id, {})

    def sessions_with(self, pid: int) -> List[str]:
        """Sessions holding ``pid``; at most one by construction."""
        with self._lock:
            return [sid for sid, procs in self._processes.items() if pid in procs]

    def count(self) -> int:
        with self._lock:
            return sum(len(procs) for procs in self._processes.values())

    def _prune(self) -> None:
        # Caller holds the lock.
        for sid in [sid for sid, procs in self._processes.items() if not procs]:
            del self._processes[sid]

    def _send_kill(self, entry: RunningProcess) -> None:
        # Caller holds the lock. A child that already exited is not an error.
        try:
            if self._kill_process_group:
                os.killpg(entry.pid, signal.SIGKILL)
            else:
                entry.process.kill()
        except ProcessLookupError:
            logger.debug("Process already exited", pid=entry.pid)
        except PermissionError:
            try:
                entry.process.kill()
            except ProcessLookupError:
                logger.debug("Process already exited", pid=entry.pid)
