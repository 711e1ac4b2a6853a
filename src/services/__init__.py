"""Services for the process runner API."""

from .registry import ProcessRegistry, RunningProcess
from .sessions import OutputChannel, Session, SessionStore
from .relay import StreamRelay, escape_markup
from .orchestrator import OperationResult, RunOrchestrator, StopOrchestrator

__all__ = [
    "ProcessRegistry",
    "RunningProcess",
    "OutputChannel",
    "Session",
    "SessionStore",
    "StreamRelay",
    "escape_markup",
    "OperationResult",
    "RunOrchestrator",
    "StopOrchestrator",
]
